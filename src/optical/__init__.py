"""optical -- query Optica, a host-registration service, from the command line.

Filter arguments such as ``role=/^web/`` are turned into an Optica query URI,
the response is fetched with a progress bar on stderr and cached on disk for
fifteen minutes, and matching nodes are printed to stdout as JSON lines or as
tab-separated fields.

Typical usage::

    optical role=/^example-/              # JSON stream of matching nodes
    optical --just hostname role=example  # one hostname per line

Modules:
    app: Typer application and console-script entry point.
    filters: ``KEY=VALUE`` token parsing into typed filters.
    request: Query builder rendering filters into a request URI.
    cache: Time-bounded on-disk response cache.
    client: Streaming HTTP fetcher with progress events.
    pipeline: Parse, build, cache-or-fetch, decode.
    config: XDG-aware YAML configuration (default host, cache settings).
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.4.0"
