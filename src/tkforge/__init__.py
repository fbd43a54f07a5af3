"""Describe a Tkinter app, let the assistant write it, run and version it locally."""

__version__ = "1.0.0"
