"""Query pipeline: parse filters, build the URI, serve from cache or fetch.

:class:`Pipeline` is the seam between the CLI and the core.  The host,
cache and fetcher are handed in explicitly; nothing here reads global
configuration.

Example::

    with ResponseCache(get_cache_dir()) as cache, Fetcher() as fetcher:
        pipeline = Pipeline("https://optica.example.com", cache, fetcher)
        result = pipeline.query(["role=/^web/"], fields=["hostname"])
        for node in result.records:
            print(node["hostname"])
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

from optical.cache import ResponseCache
from optical.client import Fetcher, ProgressCallback
from optical.exceptions import TransportError
from optical.filters import parse_filters
from optical.output import debug
from optical.request import QueryBuilder, QueryDescriptor

Record = dict[str, Any]


class FieldMode(enum.Enum):
    """Sentinel field selections."""

    ALL = "all"


ALL_FIELDS = FieldMode.ALL
"""Pass as ``fields`` to fetch every field from the service root."""

FieldSpec = Union[Sequence[str], FieldMode]


@dataclass(frozen=True)
class QueryResult:
    """Outcome of one query.

    Attributes:
        uri: The request URI, which is also the cache key.
        descriptor: The request shape the URI was rendered from.
        records: Matching nodes in the order the service returned them.
    """

    uri: str
    descriptor: QueryDescriptor
    records: list[Record] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.records


class Pipeline:
    """Run Optica queries through the response cache.

    Args:
        host: Optica root URL.
        cache: Response cache consulted before every fetch.
        fetcher: An entered :class:`~optical.client.Fetcher`.
        on_progress: Optional download progress callback.
    """

    def __init__(
        self,
        host: str,
        cache: ResponseCache,
        fetcher: Fetcher,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._host = host
        self._cache = cache
        self._fetcher = fetcher
        self._on_progress = on_progress

    @property
    def host(self) -> str:
        return self._host

    def build_request(self, tokens: Sequence[str], fields: FieldSpec = ()) -> QueryBuilder:
        """Parse *tokens* and return a builder with filters and fields applied.

        Raises:
            MalformedFilterError: On the first token that is not ``KEY=VALUE``.
        """
        builder = QueryBuilder(self._host).where(parse_filters(tokens))
        if fields is ALL_FIELDS:
            builder.select_all()
        else:
            builder.select(*fields)
        return builder

    def query(self, tokens: Sequence[str], fields: FieldSpec = ()) -> QueryResult:
        """Run one query and return the matching records.

        Args:
            tokens: ``KEY=VALUE`` filter arguments.
            fields: Extra field names, or :data:`ALL_FIELDS`.

        Returns:
            A :class:`QueryResult`; an empty ``records`` list means nothing
            matched.

        Raises:
            MalformedFilterError: If a filter token is malformed.
            TransportError: If the fetch fails or the body is not an Optica
                response.
        """
        descriptor = self.build_request(tokens, fields).build()
        uri = descriptor.to_uri()

        debug(f"URL:     {descriptor.root}")
        params = {k: f.to_param() for k, f in descriptor.filters.items()}
        debug(f"Filters: {params}")
        debug(f"Fields:  {'(all fields)' if descriptor.all_fields else list(descriptor.fields)}")
        debug(f"GET      {uri}")

        nodes = self._load(uri)
        records = list(nodes.values())
        debug(f"got {len(records)} entries")
        return QueryResult(uri=uri, descriptor=descriptor, records=records)

    def _load(self, uri: str) -> dict[str, Record]:
        """Return the decoded nodes for *uri*, decoding each body once."""
        fetched: list[dict[str, Record]] = []

        def fetch() -> bytes:
            body = self._fetcher.fetch(uri, self._on_progress)
            # Validate before the body reaches the cache.
            fetched.append(decode_nodes(body))
            return body

        payload = self._cache.get_or_fetch(uri, fetch)
        if fetched:
            return fetched[-1]
        try:
            return decode_nodes(payload)
        except TransportError as exc:
            debug(f"Discarding unreadable cached response: {exc}")
            self._cache.invalidate(uri)

        payload = self._cache.get_or_fetch(uri, fetch)
        return fetched[-1] if fetched else decode_nodes(payload)


def decode_nodes(payload: bytes) -> dict[str, Record]:
    """Decode an Optica response body and return its ``nodes`` mapping.

    Raises:
        TransportError: If the body is not JSON, not an object with a
            ``nodes`` mapping, or a node is not itself an object.
    """
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise TransportError(f"Malformed response body: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("nodes"), dict):
        raise TransportError("Malformed response body: expected an object with a 'nodes' mapping")
    for key, node in data["nodes"].items():
        if not isinstance(node, dict):
            raise TransportError(f"Malformed response body: node {key!r} is not an object")
    return data["nodes"]
