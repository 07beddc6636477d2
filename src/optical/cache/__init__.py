"""Disk-based response caching for optical.

This package provides :class:`ResponseCache`, a memoization layer that
stores raw Optica response bodies on disk using :mod:`diskcache`, keyed by
the exact request URI, with a fixed freshness window (15 minutes by
default).

The cache is consumed by :class:`~optical.pipeline.Pipeline` and is
controlled by the ``cache`` section of ``config.yml``
(:class:`~optical.models.CacheConfig`).
"""

from optical.cache.cache import CACHE_MAX_AGE, ResponseCache

__all__ = ["CACHE_MAX_AGE", "ResponseCache"]
