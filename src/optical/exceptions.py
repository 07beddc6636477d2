"""Exception hierarchy for optical.

All exceptions inherit from :class:`OpticalError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`optical.exit_codes`.
The top-level error handler in :func:`optical.app.main` catches
``OpticalError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

An empty query result is *not* an exception; the CLI maps it to
:data:`~optical.exit_codes.EXIT_NOT_FOUND` directly.

Subclass hierarchy::

    OpticalError (exit 1)
    +-- InvalidUsageError       (exit 2)
    |   +-- MalformedFilterError (exit 2)
    +-- TransportError          (exit 6, or 5 for HTTP error statuses)
    +-- ConfigError             (exit 1)
"""

from __future__ import annotations

from typing import Optional

from optical.exit_codes import (
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SERVER_ERROR,
)


class OpticalError(Exception):
    """Base exception for all optical errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(OpticalError):
    """Raised for invalid CLI arguments (e.g. no host given)."""

    exit_code = EXIT_INVALID_USAGE


class MalformedFilterError(InvalidUsageError):
    """Raised when a filter token is not of the form ``KEY=VALUE``.

    Args:
        token: The offending command-line token.
        reason: Optional detail appended to the message.
    """

    def __init__(self, token: str, reason: str | None = None):
        message = f"Invalid filter: {token!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.token = token


class TransportError(OpticalError):
    """Raised on network failures, non-2xx responses, or malformed bodies.

    When the server answered with an error status, ``status_code`` is set and
    the exit code becomes :data:`EXIT_SERVER_ERROR`.

    Args:
        message: Human-readable error description.
        status_code: HTTP status of the failed response, if any.
    """

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message,
            exit_code=EXIT_SERVER_ERROR if status_code is not None else None,
        )
        self.status_code = status_code


class ConfigError(OpticalError):
    """Raised for configuration problems (unreadable or invalid config.yml)."""

    exit_code = EXIT_GENERIC_FAILURE
