"""Shared test fixtures for optical.

Provides reusable fixtures for isolated config/cache directories, output
state, canned Optica responses, and running the CLI.  These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from optical.output import OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and cache to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path so that tests never touch real user
    config, forces the XDG code path, and clears ``OPTICAL_HOST``.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("optical.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("OPTICAL_HOST", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet, colourless OutputManager for tests that don't care about output."""
    output = OutputManager(no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Optica response fixtures
# ---------------------------------------------------------------------------


def optica_body(nodes: dict[str, dict[str, Any]]) -> bytes:
    """Encode *nodes* the way Optica's /roles endpoint does."""
    return json.dumps({"status": "success", "nodes": nodes}).encode()


@pytest.fixture
def sample_nodes() -> dict[str, dict[str, Any]]:
    """Three nodes keyed by IP, deliberately not in sorted order."""
    return {
        "10.0.0.3": {"id": "i-3", "hostname": "web-3.example.com", "role": "web"},
        "10.0.0.1": {"id": "i-1", "hostname": "web-1.example.com", "role": "web"},
        "10.0.0.2": {"id": "i-2", "hostname": "db-1.example.com", "role": "db"},
    }


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
