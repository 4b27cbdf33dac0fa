"""Taskdeck: multi-tenant task tracking with real-time notifications."""

__version__ = "0.1.0"
