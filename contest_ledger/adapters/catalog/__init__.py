"""Catalog provider adapters."""

from .client import HttpCatalogProvider
from .provider import DEFAULT_PLAYER_POOL, CatalogProvider, StaticCatalogProvider, snapshot_slots

__all__ = [
    "CatalogProvider",
    "DEFAULT_PLAYER_POOL",
    "HttpCatalogProvider",
    "StaticCatalogProvider",
    "snapshot_slots",
]
