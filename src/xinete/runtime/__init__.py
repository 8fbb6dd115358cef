# src/xinete/runtime/__init__.py
"""Runtime plumbing: SQLite access, app context, metrics, structured events."""
