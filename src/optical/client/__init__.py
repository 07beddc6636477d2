"""HTTP client module for optical.

Provides :class:`Fetcher`, a blocking client backed by :class:`httpx.Client`
that streams a single GET and reports download progress as
:class:`ProgressEvent` values.

Example::

    from optical.client import Fetcher

    with Fetcher(timeout=30) as fetcher:
        body = fetcher.fetch("https://optica.example.com/roles")
"""

from optical.client.fetcher import Fetcher, ProgressCallback, ProgressEvent

__all__ = ["Fetcher", "ProgressCallback", "ProgressEvent"]
