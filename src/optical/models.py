"""Pydantic configuration models for optical.

These models are serialised as YAML in the user's config directory
(``config.yml``) by :mod:`optical.config`.  Every section has defaults so
that an empty or missing file yields a usable configuration; in practice
the only value users set is :attr:`OpticalConfig.default_host`, via
``optical --set-default-host``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

CACHE_MAX_AGE = 15 * 60
"""Default freshness window for cached responses, in seconds."""


class CacheConfig(BaseModel):
    """On-disk response cache settings."""

    enabled: bool = Field(default=True, description="Enable response caching")
    max_age_seconds: int = Field(
        default=CACHE_MAX_AGE,
        ge=0,
        description="Age after which a cached response is re-fetched",
    )


class RequestConfig(BaseModel):
    """HTTP settings applied to the Optica GET request."""

    timeout: Optional[float] = Field(
        default=None, description="Request timeout in seconds (no timeout when unset)"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")


class OutputConfig(BaseModel):
    """Output preferences."""

    pretty: Optional[bool] = Field(
        default=None,
        description="Pretty-print JSON; when unset, pretty only if stdout is a TTY",
    )


class OpticalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/optical/config.yml``.

    Loaded once per invocation by :func:`~optical.config.load_config` and
    handed to the pipeline explicitly; nothing reads it from global state.
    """

    default_host: Optional[str] = Field(
        default=None, description="Optica root URL used when --host is not given"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
