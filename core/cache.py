"""
Prefix-scoped cache with per-entry expiry on top of django.core.cache.

Whoever needs caching creates an ExpiringCache and holds on to it. Entries
live in a Django cache backend (Redis in production, local memory in
development and tests), so every process that uses the same backend and
prefix sees the same entries and the same invalidations.
"""
import logging
import uuid

from django.core.cache import caches

logger = logging.getLogger(__name__)


class ExpiringCache:
    """
    Key/value store where every entry carries its own time-to-live.

    clear() only drops the entries under this cache's prefix: every key is
    stored under the prefix's current generation, and clearing starts a new
    generation. Entries of old generations are never read again and expire
    on their own.

    Args:
        prefix: Namespace for the keys of this cache.
        default_ttl: Seconds an entry lives when put() is called without ttl.
            None means entries never expire.
        backend: Django cache backend instance. When omitted the backend is
            looked up by `alias` on every call.
        alias: Name of the CACHES entry to use.
    """

    def __init__(self, prefix, default_ttl=None, backend=None, alias='default'):
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.alias = alias
        self._backend = backend

    @property
    def backend(self):
        if self._backend is not None:
            return self._backend
        return caches[self.alias]

    @property
    def _generation_key(self):
        return f'{self.prefix}:generation'

    def _generation(self):
        generation = self.backend.get(self._generation_key)
        if generation is None:
            # add() keeps whichever generation another process set first
            self.backend.add(self._generation_key, uuid.uuid4().hex, None)
            generation = self.backend.get(self._generation_key)
        return generation

    def _make_key(self, key):
        return f'{self.prefix}:{self._generation()}:{key}'

    def get(self, key):
        """Return the cached value, or None if missing or expired."""
        return self.backend.get(self._make_key(key))

    def put(self, key, value, ttl=None):
        """Store a value; ttl overrides the default time-to-live."""
        ttl = self.default_ttl if ttl is None else ttl
        self.backend.set(self._make_key(key), value, ttl)

    def invalidate(self, key):
        self.backend.delete(self._make_key(key))

    def clear(self):
        self.backend.set(self._generation_key, uuid.uuid4().hex, None)
        logger.debug(f"Cleared cache {self.prefix}")

    def __contains__(self, key):
        return self.get(key) is not None
