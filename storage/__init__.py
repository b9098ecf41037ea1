"""
Storage Package

Shared key-value store used for rate-limit counters and cached responses.

Current implementation:
- KeyValueStore: abstract contract (get / put with TTL / atomic increment)
- InMemoryStore: process-local store guarded by an asyncio.Lock

Any backend honouring KeyValueStore (for instance one built on a networked
cache) can be passed to the RateLimiter and ResponseCache instead.
"""

from storage.base import KeyValueStore
from storage.memory import InMemoryStore

__all__ = ["KeyValueStore", "InMemoryStore"]
