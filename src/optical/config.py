"""Configuration management with XDG paths, atomic writes, and host resolution.

This module handles all persistent state for optical:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.optical/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Config file** -- A single :class:`~optical.models.OpticalConfig`
  YAML file (``config.yml``) storing the default host and cache settings.
* **Host resolution** -- :func:`resolve_host` merges the ``--host`` flag,
  the ``OPTICAL_HOST`` environment variable, and the config file into the
  Optica root URL for one invocation.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent a half-written config on crash.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from optical.exceptions import ConfigError
from optical.models import OpticalConfig

_APP_NAME = "optical"
_CONFIG_FILENAME = "config.yml"
_HOST_ENV_VAR = "OPTICAL_HOST"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/optical/`` (default ``~/.config/optical/``).
    On macOS/Windows: ``~/.optical/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory.

    Unlike the other directories this one is *not* created here: the
    response cache creates it lazily and degrades to uncached operation
    when it cannot.

    On Linux/BSD: ``$XDG_CACHE_HOME/optical/`` (default ``~/.cache/optical/``).
    On macOS/Windows: ``~/.optical/cache/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    return _fallback_base_dir() / "cache"


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/optical/`` (default ``~/.local/share/optical/``).
    On macOS/Windows: ``~/.optical/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems.  On any failure the
    temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config file ---


def config_path() -> Path:
    """Path to the YAML config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> OpticalConfig:
    """Load the configuration file.

    Args:
        path: Explicit file to read; defaults to :func:`config_path`.

    Returns:
        The deserialised :class:`~optical.models.OpticalConfig`. A missing
        or empty file yields the defaults.

    Raises:
        ConfigError: If the file exists but is not valid YAML, is not a
            mapping, or fails Pydantic validation.
    """
    path = path or config_path()
    if not path.is_file():
        return OpticalConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    if data is None:
        return OpticalConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config at {path}: expected a mapping")
    try:
        return OpticalConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: OpticalConfig, path: Optional[Path] = None) -> Path:
    """Persist the configuration atomically and return the written path."""
    path = path or config_path()
    data = config.model_dump(mode="json")
    _atomic_write(path, yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    return path


def set_default_host(host: str, path: Optional[Path] = None) -> OpticalConfig:
    """Store *host* as the default Optica host, keeping other settings."""
    config = load_config(path)
    config.default_host = host
    save_config(config, path)
    return config


# --- Host resolution ---


def resolve_host(cli_host: Optional[str], config: OpticalConfig) -> Optional[str]:
    """Resolve the Optica host for this invocation.

    Precedence (high to low):
        1. ``--host`` flag
        2. ``OPTICAL_HOST`` environment variable
        3. ``default_host`` from ``config.yml``

    Returns:
        The host URI, or ``None`` when none of the sources provide one.
    """
    if cli_host:
        return cli_host
    env_host = os.environ.get(_HOST_ENV_VAR)
    if env_host:
        return env_host
    return config.default_host
