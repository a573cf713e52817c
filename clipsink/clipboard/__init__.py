"""Clipboard delivery for decoded uploads.

The platform clipboard is a single process-wide resource; every write
goes through one ClipboardSink, which serialises access behind a lock.
"""
