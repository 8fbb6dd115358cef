# src/xinete/services/__init__.py
from xinete.services.catalog import CatalogItem, CatalogService, PublishResult

__all__ = ["CatalogItem", "CatalogService", "PublishResult"]
