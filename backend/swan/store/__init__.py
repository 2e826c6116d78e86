"""Replicated graph store adapters.

The station engines depend only on ``ReplicatedStore`` and ``Ref``; which
replica backs them is a deployment choice (``STORE_BACKEND``).
"""

from .base import MapRef, Ref, ReplicatedStore, Subscription, now_ms
from .memory import MemoryStore
from .sql import SqlStore

__all__ = [
    'MapRef',
    'MemoryStore',
    'Ref',
    'ReplicatedStore',
    'SqlStore',
    'Subscription',
    'now_ms',
]
