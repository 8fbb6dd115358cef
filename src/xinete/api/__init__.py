# src/xinete/api/__init__.py
"""FastAPI surface over the registry, pin coordinator and catalog."""
