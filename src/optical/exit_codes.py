"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific outcome and is referenced by the
corresponding :class:`~optical.exceptions.OpticalError` subclass.
Shell wrappers can inspect the exit code to tell "no hosts matched" apart
from a network failure without parsing stderr.

Example::

    $ optical role=does-not-exist
    $ echo $?
    4   # EXIT_NOT_FOUND -- the query matched no nodes
"""

EXIT_SUCCESS = 0
"""The query succeeded and matched at least one node."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments: a malformed filter token or no host configured."""

EXIT_NOT_FOUND = 4
"""The query succeeded but matched zero nodes."""

EXIT_SERVER_ERROR = 5
"""Optica answered with a non-2xx HTTP status."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (DNS failure, connection refused, broken body)."""

EXIT_CANCELLED = 130
"""The user interrupted the process with Ctrl-C."""
