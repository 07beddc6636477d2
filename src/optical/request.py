"""Build Optica request URIs.

There is no support for posting data to Optica; a request is always a GET
against either the service root (all fields) or ``/roles``.

By default a request asks for the minimum set of fields via the ``/roles``
endpoint to keep the response small.  Use :meth:`QueryBuilder.select` to ask
for extra fields on top of the defaults, or :meth:`QueryBuilder.select_all`
to fetch every field from the root endpoint.

Example::

    from optical.filters import parse_filters
    from optical.request import QueryBuilder

    uri = (
        QueryBuilder("https://optica.example.com")
        .where(parse_filters(["role=web", "env=/^prod/"]))
        .select("hostname", "id")
        .to_uri()
    )
    # https://optica.example.com/roles?role=%5Eweb%24&env=%5Eprod&_extra_fields=hostname%2Cid
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from optical.exceptions import InvalidUsageError
from optical.filters import Filter

ROLES_PATH = "/roles"
ROOT_PATH = "/"
EXTRA_FIELDS_PARAM = "_extra_fields"


@dataclass(frozen=True)
class QueryDescriptor:
    """Immutable, fully specified shape of one Optica query.

    Attributes:
        root: The Optica root URL as given by the user.
        filters: Field name to filter, in insertion order.
        fields: Extra fields to request, distinct, in first-seen order.
        all_fields: Fetch every field from the root endpoint; ``fields`` is
            ignored when set.
    """

    root: str
    filters: Mapping[str, Filter] = field(default_factory=dict)
    fields: tuple[str, ...] = ()
    all_fields: bool = False

    def query_params(self) -> dict[str, str]:
        """Return the query parameters in their rendered order."""
        params = {key: f.to_param() for key, f in self.filters.items()}
        if self.fields and not self.all_fields:
            params[EXTRA_FIELDS_PARAM] = ",".join(self.fields)
        return params

    @property
    def path(self) -> str:
        return ROOT_PATH if self.all_fields else ROLES_PATH

    def to_uri(self) -> str:
        """Render the descriptor as a fully qualified request URI."""
        parts = urlsplit(self.root)
        return urlunsplit(
            (parts.scheme, parts.netloc, self.path, urlencode(self.query_params()), "")
        )


class QueryBuilder:
    """Accumulate filters and a field selection, then render a URI.

    All mutators return ``self`` so calls can be chained.

    Args:
        root_url: HTTP(S) root of the Optica instance.

    Raises:
        InvalidUsageError: If *root_url* is not an absolute http(s) URL.
    """

    def __init__(self, root_url: str) -> None:
        try:
            url = httpx.URL(root_url)
        except httpx.InvalidURL as exc:
            raise InvalidUsageError(f"Invalid host {root_url!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidUsageError(
                f"Invalid host {root_url!r}: expected an http:// or https:// URL"
            )
        self._root = root_url
        self._filters: dict[str, Filter] = {}
        self._fields: list[str] = []
        self._all_fields = False

    @property
    def root(self) -> str:
        return self._root

    def where(self, filters: Mapping[str, Filter]) -> QueryBuilder:
        """Add filters; a filter on an existing field replaces it."""
        self._filters.update(filters)
        return self

    def select(self, *fields: str) -> QueryBuilder:
        """Request extra fields in addition to the ``/roles`` defaults."""
        for name in fields:
            if name and name not in self._fields:
                self._fields.append(name)
        return self

    def select_all(self) -> QueryBuilder:
        """Request all fields. Previously selected fields are ignored from now on."""
        self._all_fields = True
        return self

    def build(self) -> QueryDescriptor:
        """Snapshot the current state into an immutable :class:`QueryDescriptor`."""
        return QueryDescriptor(
            root=self._root,
            filters=MappingProxyType(dict(self._filters)),
            fields=() if self._all_fields else tuple(self._fields),
            all_fields=self._all_fields,
        )

    def to_uri(self) -> str:
        return self.build().to_uri()
