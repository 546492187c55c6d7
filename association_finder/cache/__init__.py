"""Persisted peer -> resource association cache."""

from .association_cache import AssociationCache
from .snapshot import CacheSnapshot

__all__ = ['AssociationCache', 'CacheSnapshot']
