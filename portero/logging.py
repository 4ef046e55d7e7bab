"""Logging utilities: configure Uvicorn-compatible logs and startup banner."""

import logging as pylog
from typing import Iterable, Optional, List

try:  # FastAPI might not be installed in lint-only environments
    from fastapi.routing import APIRoute
except ImportError:  # pragma: no cover
    APIRoute = None  # type: ignore[assignment]

from .version import __version__

# Use uvicorn.error logger (guaranteed to exist + colored in dev)
log = pylog.getLogger("uvicorn.error")

_INVALID_HTTP_FRAGMENTS = ["Invalid HTTP request received."]

# pylint: disable=too-few-public-methods
class _MessageFilter(pylog.Filter):
    def __init__(self, *, deny_contains: Optional[List[str]] = None):
        super().__init__()
        self.deny_contains = deny_contains or []

    def filter(self, record: pylog.LogRecord) -> bool:  # True -> keep
        msg = record.getMessage()
        for frag in self.deny_contains:
            if frag in msg:
                return False
        return True


def configure_logging(
    level: str = "INFO",
    *,
    suppress_access_logs: bool = False,
    suppress_invalid_http_warnings: bool = True,
) -> None:
    """Apply ``level`` to the uvicorn loggers and install noise filters."""
    if not pylog.getLogger().handlers:
        pylog.basicConfig(format="%(levelname)s:     %(message)s")

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        pylog.getLogger(name).setLevel(level)

    error_log = pylog.getLogger("uvicorn.error")
    for existing in [f for f in error_log.filters if isinstance(f, _MessageFilter)]:
        error_log.removeFilter(existing)
    if suppress_invalid_http_warnings:
        error_log.addFilter(_MessageFilter(deny_contains=_INVALID_HTTP_FRAGMENTS))

    # our own LoggingMiddleware writes the access line
    pylog.getLogger("uvicorn.access").disabled = suppress_access_logs


# pylint: disable=too-many-arguments
def log_startup_banner(
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    whitelist_enabled: bool = True,
    whitelist_entries: Iterable[str] = (),
    trusted_hops: int = 1,
    forwarded_header: str = "x-forwarded-for",
    version: str = __version__,
) -> None:
    """Log the startup banner with configuration details."""
    url = f"http://{host}:{port}"
    entries = [str(e) for e in whitelist_entries if e]
    ranges = sum(1 for e in entries if "/" in e)

    ruler = "═" * 64

    banner = f"""
{ruler}
        PORTERO · IP gatekeeper v{version}

        Listening → {url}
        IP allow-list → {'ENABLED' if whitelist_enabled else 'DISABLED'} ({len(entries) - ranges} address{'es' if len(entries) - ranges != 1 else ''}, {ranges} range{'s' if ranges != 1 else ''})
        Trusted proxy hops → {trusted_hops} (via {forwarded_header if trusted_hops else 'peer address only'})
{ruler}
    """

    for line in banner.strip().splitlines():
        log.info(line)
    for entry in entries:
        log.debug("  allow %s", entry)


def log_endpoints(app) -> None:
    """Log all registered APIRoute endpoints."""
    if APIRoute is None:
        log.info("FastAPI not available; skipping endpoint log.")
        return

    lines = []
    for route in getattr(app, "routes", []):
        if isinstance(route, APIRoute):
            methods = sorted(
                m for m in (route.methods or []) if m not in {"HEAD", "OPTIONS"}
            )
            method_str = ",".join(methods) or "-"
            lines.append((route.path, method_str, route.name))

    lines.sort(key=lambda x: (x[0], x[1]))
    header = f"Available endpoints ({len(lines)}):"

    log.info("%s", header)
    for path, methods, name in lines:
        log.info("  %-7s %-40s (%s)", methods, path, name)
