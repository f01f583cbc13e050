"""Enforcement store backends."""

from .base import EnforcementStore, reconcile_set
from .memory import MemoryStore
from .nftables import NftablesStore

__all__ = ['EnforcementStore', 'reconcile_set', 'MemoryStore', 'NftablesStore']
