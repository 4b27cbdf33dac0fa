"""Pydantic schemas shared by the Taskdeck server and its real-time client."""

__version__ = "0.1.0"
