"""Streaming HTTP GET with download progress events.

This module provides :class:`Fetcher`, the blocking HTTP client used by
:class:`~optical.pipeline.Pipeline` on a cache miss.  It wraps
:class:`httpx.Client` and streams the response body so that a progress
callback can be notified after each chunk.

Every failure -- connection refused, DNS, timeout, a non-2xx status, or a
body that breaks off mid-stream -- is raised as
:class:`~optical.exceptions.TransportError`.  There is no retry; a caller
that wants one can wrap :meth:`Fetcher.fetch`.

There is no timeout by default.  Pass ``timeout`` (seconds) to bound the
connect and read phases.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from optical.exceptions import TransportError


@dataclass(frozen=True)
class ProgressEvent:
    """Progress of one download.

    Attributes:
        bytes_so_far: Body bytes received so far.
        ratio: Fraction of the body received, in ``[0, 1]``, or ``None``
            when the server did not send a ``Content-Length``.
    """

    bytes_so_far: int
    ratio: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.ratio is not None and self.ratio >= 1.0


ProgressCallback = Callable[[ProgressEvent], None]


class Fetcher:
    """Blocking, streaming HTTP client for Optica requests.

    Must be used as a context manager so that the underlying transport is
    opened and closed properly.

    Args:
        timeout: Seconds before connect/read give up; ``None`` waits forever.
        verify: Verify TLS certificates for ``https://`` hosts.
        transport: Optional httpx transport, mainly for tests
            (``httpx.MockTransport``).

    Example::

        with Fetcher() as fetcher:
            body = fetcher.fetch(uri, on_progress=print)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> Fetcher:
        self._client = httpx.Client(
            timeout=self._timeout,
            verify=self._verify,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def fetch(self, uri: str, on_progress: Optional[ProgressCallback] = None) -> bytes:
        """GET *uri* and return the full response body.

        Args:
            uri: Fully qualified request URI.
            on_progress: Called after every received chunk with the
                cumulative byte count and completion ratio.

        Returns:
            The concatenated response body.

        Raises:
            TransportError: On network errors, non-2xx responses, or a
                truncated/undecodable body.
        """
        assert self._client is not None, "Fetcher not initialised -- use as context manager"

        chunks: list[bytes] = []
        try:
            with self._client.stream("GET", uri, headers={"Accept": "application/json"}) as response:
                if not response.is_success:
                    raise TransportError(
                        f"HTTP {response.status_code} {response.reason_phrase} from {uri}",
                        status_code=response.status_code,
                    )

                total = _content_length(response)
                received = 0
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if on_progress is not None:
                        # Content-Length counts encoded bytes.
                        ratio = _ratio(response.num_bytes_downloaded, total)
                        on_progress(ProgressEvent(received, ratio))
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {uri} failed: {exc}") from exc

        return b"".join(chunks)


def _content_length(response: httpx.Response) -> Optional[int]:
    """Return the declared body size, or ``None`` if absent or unusable."""
    raw = response.headers.get("content-length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        return None
    return length if length > 0 else None


def _ratio(received: int, total: Optional[int]) -> Optional[float]:
    if total is None:
        return None
    return min(received / total, 1.0)
