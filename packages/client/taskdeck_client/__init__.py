"""Taskdeck real-time notification listener."""

__version__ = "0.1.0"
