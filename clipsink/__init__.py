"""Clipsink: a ShareX-compatible upload server that copies screenshots to the clipboard."""

__version__ = "0.1.0"
