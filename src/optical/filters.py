"""Parse ``KEY=VALUE`` command-line tokens into typed Optica filters.

Three filter kinds are recognised, by the shape of the value:

* **exact** -- the base case: ``role=webserver``
* **regex** -- value begins and ends with ``/``: ``role=/^web-/``
* **set** -- value begins with ``[`` and ends with ``]``: ``env=[prod,canary]``

Each kind is its own frozen dataclass and knows how to render itself as an
Optica query parameter, so :mod:`optical.request` never inspects value types.
Optica matches every parameter as a regular expression against the node's
field, which is why exact and set filters render as anchored patterns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Union

from optical.exceptions import MalformedFilterError


@dataclass(frozen=True)
class ExactFilter:
    """Match a field equal to ``value``."""

    key: str
    value: str

    def to_param(self) -> str:
        return f"^{re.escape(self.value)}$"


@dataclass(frozen=True)
class RegexFilter:
    """Match a field against ``pattern``, unanchored."""

    key: str
    pattern: re.Pattern

    def to_param(self) -> str:
        return self.pattern.pattern


@dataclass(frozen=True)
class SetFilter:
    """Match a field equal to any of ``members``.

    Members keep the order the user wrote them in (duplicates dropped) so
    that the rendered URI, and therefore the cache key, is stable.
    """

    key: str
    members: tuple[str, ...]

    def to_param(self) -> str:
        if not self.members:
            # The empty set matches nothing.
            return "(?!)"
        alternatives = "|".join(re.escape(m) for m in self.members)
        return f"^(?:{alternatives})$"


Filter = Union[ExactFilter, RegexFilter, SetFilter]


def parse_filter(token: str) -> Filter:
    """Parse one command-line argument into a single filter.

    The token is split on the first ``=`` only; everything after it is the
    value, so values may themselves contain ``=``.  A one-character value
    such as ``/`` or ``[`` is an exact match, since regex and set values
    need both an opening and a closing delimiter.

    Args:
        token: A ``KEY=VALUE`` argument.

    Returns:
        An :class:`ExactFilter`, :class:`RegexFilter` or :class:`SetFilter`.

    Raises:
        MalformedFilterError: If the token has no ``=``, the key is empty,
            or a regex value does not compile.
    """
    key, sep, value = token.partition("=")
    if not sep:
        raise MalformedFilterError(token)
    if not key:
        raise MalformedFilterError(token, "empty field name")

    if len(value) >= 2 and value[0] == "/" and value[-1] == "/":
        try:
            pattern = re.compile(value[1:-1])
        except re.error as exc:
            raise MalformedFilterError(token, f"bad regex: {exc}") from exc
        return RegexFilter(key, pattern)

    if len(value) >= 2 and value[0] == "[" and value[-1] == "]":
        inner = value[1:-1]
        members = inner.split(",") if inner else []
        return SetFilter(key, tuple(dict.fromkeys(members)))

    return ExactFilter(key, value)


def parse_filters(tokens: Iterable[str]) -> dict[str, Filter]:
    """Parse *tokens* in order into a mapping of field name to filter.

    A later filter on the same field replaces the earlier one.  Parsing
    stops at the first malformed token.
    """
    filters: dict[str, Filter] = {}
    for token in tokens:
        f = parse_filter(token)
        filters[f.key] = f
    return filters
