"""Typer application and CLI entry point for optical.

``optical [OPTIONS] [FIELD=FILTER]...`` fetches host information from
Optica, caches it for 15 minutes, and prints matching nodes to stdout as a
JSON stream suitable for ``jq`` (or as tab-separated fields with
``--just``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``.  It installs signal handlers and invokes the Typer app.
Unhandled exceptions are written to a crash log under the data directory.

See Also:
    :mod:`optical.pipeline`: The parse/build/cache/fetch pipeline.
    :mod:`optical.config`: Default host and cache configuration.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from optical import __version__
from optical.exit_codes import (
    EXIT_CANCELLED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
)

if TYPE_CHECKING:
    from optical.models import OpticalConfig
    from optical.output import OutputManager

EPILOG = """\
Examples:

  Retrieve all nodes with a role starting with "example-":
    optical role=/^example-/

  Retrieve all the nodes registered to a test optica instance:
    optical -h https://optica-test.example.com

  Retrieve all data about my nodes:
    optical --all launched_by=`whoami`

  SSH into the first matched node:
    ssh $(optical --just hostname role=example branch=jake-test | head -n 1)
"""

app = typer.Typer(
    name="optical",
    help="Query Optica, the host registration service.",
    add_completion=False,
    rich_markup_mode=None,
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"optical {__version__}")
        raise typer.Exit()


def _split_csv(values: Optional[List[str]]) -> list[str]:
    """Flatten repeated ``a,b,c`` option values into a list of names."""
    names: list[str] = []
    for value in values or []:
        names.extend(part for part in value.split(",") if part)
    return names


def _configure_logging(verbose: bool) -> None:
    """Route the ``optical`` logger to stderr through Rich."""
    logger = logging.getLogger("optical")
    logger.handlers.clear()
    handler = RichHandler(
        console=Console(file=sys.stderr, stderr=True),
        show_time=False,
        show_path=False,
    )
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


@app.command(
    epilog=EPILOG,
    context_settings={"help_option_names": ["--help"]},
)
def query_command(
    filters: Optional[List[str]] = typer.Argument(
        None,
        metavar="[FIELD=FILTER]...",
        help='Filters: a bare string like "optica", a regex like "/^(o|O)ptica?/", '
        'or a set like "[web,api]".',
        show_default=False,
    ),
    select: Optional[List[str]] = typer.Option(
        None, "--select", "-s", metavar="a,b,c",
        help="Retrieve the given fields, in addition to the defaults.",
    ),
    all_fields: bool = typer.Option(
        False, "--all", "-a",
        help="Retrieve all fields (default is just role, id, hostname).",
    ),
    just: Optional[List[str]] = typer.Option(
        None, "--just", "-j", metavar="a,b,c",
        help="Print just the given fields as tab-separated strings instead of JSON. "
        "Implies selecting those fields.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Print debug information to stderr."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress the progress bar and informational output."
    ),
    pretty: Optional[bool] = typer.Option(
        None, "--pretty/--no-pretty", "-p",
        help="Pretty-print JSON (default: when stdout is a TTY).",
        show_default=False,
    ),
    refresh: bool = typer.Option(
        False, "--refresh", "-r", help="Delete the cache before performing the request."
    ),
    host: Optional[str] = typer.Option(
        None, "--host", "-h", metavar="URI", help="Optica host for this invocation."
    ),
    set_default_host: Optional[str] = typer.Option(
        None, "--set-default-host", "-H", metavar="URI", help="Set the default Optica host."
    ),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Fetch host information from Optica, and cache it for 15 minutes.

    Output the fetched information as a JSON stream, suitable for
    processing with `jq`.  FIELD is any Optica field; see your Optica host
    for available fields.
    """
    from optical.exceptions import OpticalError
    from optical.output import OutputManager, debug, error, info, print_records, set_output, success

    _configure_logging(verbose)

    try:
        from optical.config import load_config, resolve_host
        from optical.config import set_default_host as store_default_host
        from optical.filters import parse_filters

        config = load_config()
        output = OutputManager(
            pretty=pretty if pretty is not None else config.output.pretty,
            quiet=quiet,
            verbose=verbose,
        )
        set_output(output)

        tokens = list(filters or [])
        # Parse up front so a bad token fails before any network or cache work.
        parse_filters(tokens)

        if set_default_host:
            config = store_default_host(set_default_host)
            success(f"set default host to {set_default_host}")

        resolved_host = resolve_host(host or set_default_host, config)
        if not resolved_host:
            error("No host given.")
            info("Set the default with -H, or for the invocation with -h.")
            raise typer.Exit(code=EXIT_INVALID_USAGE)

        outs = _split_csv(just)
        if outs:
            debug(f"Will print only: {outs}")
        fields = None if all_fields else _split_csv(select) + outs

        records = _run_query(config, resolved_host, tokens, fields, refresh, output)
        print_records(records, just=outs)
    except OpticalError as exc:
        error(str(exc))
        if exc.exit_code == EXIT_INVALID_USAGE:
            info("Run 'optical --help' for usage.")
        raise typer.Exit(code=exc.exit_code) from None

    if not records:
        raise typer.Exit(code=EXIT_NOT_FOUND)


def _run_query(
    config: OpticalConfig,
    host: str,
    tokens: list[str],
    fields: Optional[list[str]],
    refresh: bool,
    output: OutputManager,
) -> list[dict[str, Any]]:
    """Open the cache and fetcher, tidy the cache, and run the pipeline."""
    from optical.cache import ResponseCache
    from optical.client import Fetcher
    from optical.config import get_cache_dir
    from optical.output import debug
    from optical.pipeline import ALL_FIELDS, Pipeline

    bar = output.progress_bar()
    with ResponseCache(get_cache_dir(), config.cache) as cache, Fetcher(
        timeout=config.request.timeout,
        verify=config.request.verify_ssl,
    ) as fetcher:
        # clean up expired stuff
        purged = cache.purge_expired()
        if purged:
            debug(f"purged {purged} expired cache entries")
        if refresh:
            debug(f"deleting cache dir {cache.directory}")
            cache.clear_all()

        pipeline = Pipeline(host, cache, fetcher, on_progress=bar)
        try:
            result = pipeline.query(tokens, ALL_FIELDS if fields is None else fields)
        finally:
            if bar is not None:
                bar.finish()
    return result.records


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from optical.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``optical`` console script.

    Unhandled :class:`~optical.exceptions.OpticalError` instances cause a
    clean exit with the error's ``exit_code``.  All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from optical.exceptions import OpticalError
        from optical.output import error

        if isinstance(exc, OpticalError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
