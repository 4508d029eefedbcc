# Store adapters package

from .base import CatalogStore
from .memory_store import InMemoryCatalogStore

__all__ = [
    "CatalogStore",
    "InMemoryCatalogStore",
]
