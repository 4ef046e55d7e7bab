"""ASGI app factory: IP allow-list gatekeeper in front of the API routes."""

import logging
import multiprocessing
import os
import signal
import sys
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import APIRouter, FastAPI
from pydantic import ValidationError
from starlette.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .logging import log_startup_banner, log_endpoints, configure_logging
from .middleware.ip_whitelist import IPWhitelistMiddleware
from .middleware.logging import LoggingMiddleware
from .routes.health import router as health_router
from .security import ClientAddressResolver
from .exception_handlers import register_exception_handlers
from .version import __version__

log = logging.getLogger("uvicorn.error")


def _please_die_gracefully(exc: ValidationError) -> None:
    """Log a clear error message and exit if the configuration is invalid."""

    problems = "\n".join(
        f"    • {'.'.join(str(p) for p in err.get('loc', ())) or 'settings'} → {err.get('msg')}"
        for err in exc.errors()
    )
    banner = (
        "\n"
        "╔" + "═" * 72 + "╗\n"
        "║  ⚠️   PORTERO CANNOT START – INVALID CONFIGURATION   ⚠️                  ║\n"
        "╚" + "═" * 72 + "╝\n"
        "\n"
        "Check the PORTERO_* environment variables:\n"
        "\n"
        f"{problems}\n"
        "\n"
        "Allow-list entries must be addresses (45.232.149.130) or CIDR ranges\n"
        "(10.214.0.0/16).\n"
    )

    log.info(banner)
    log.critical("Portero startup aborted: invalid configuration")
    _stop_parent_supervisor()
    sys.exit(1)


def _stop_parent_supervisor() -> None:
    """Signal uvicorn's parent process (if any) so reload/workers also exit."""

    parent = multiprocessing.parent_process()
    if not parent:
        return

    ppid = parent.pid
    if not ppid or ppid == os.getpid():
        return

    try:
        os.kill(ppid, signal.SIGTERM)
        log.warning("Signaled parent process pid=%s to exit", ppid)
    except OSError as exc:
        # Parent already dead or signal not permitted; ignore and rely on sys.exit.
        log.debug("Unable to signal parent process %s to exit: %s", ppid, exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app startup and shutdown events."""
    allow_list = app.state.allow_list
    if app.state.settings.ip_whitelist_enabled:
        log.info("Portero is ready; %d allow-list entries active", len(allow_list))
    else:
        log.warning("IP allow-list DISABLED: every client address is accepted!")

    yield

    log.info("Portero is shutting down.")


def create_app(
    settings: Optional[Settings] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """Create and configure the FastAPI app.

    ``routers`` are mounted after the health router; all of them sit behind
    the gatekeeper.
    """

    # Load settings; provide clear error if env is invalid
    if settings is None:
        try:
            settings = get_settings()
        except ValidationError as exc:
            _please_die_gracefully(exc)

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)

    configure_logging(
        settings.log_level,
        suppress_access_logs=settings.suppress_access_logs,
        suppress_invalid_http_warnings=settings.suppress_invalid_http_warnings,
    )

    # Built once; shared read-only by every request
    allow_list = settings.allow_list
    resolver = ClientAddressResolver(
        trusted_hop_count=settings.trusted_hop_count,
        header_name=settings.forwarded_header,
        unwrap_ipv4_mapped=settings.unwrap_ipv4_mapped,
    )

    app.state.settings = settings
    app.state.allow_list = allow_list
    app.state.resolver = resolver

    # Starlette runs the last-added middleware first:
    # logging -> gatekeeper -> CORS -> routes
    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    if settings.ip_whitelist_enabled:
        app.add_middleware(
            IPWhitelistMiddleware,
            allow_list=allow_list,
            resolver=resolver,
            rejection_message=settings.rejection_message,
        )
    app.add_middleware(
        LoggingMiddleware,
        resolver=resolver,
        enabled=not settings.suppress_access_logs,
    )
    register_exception_handlers(app)
    log.info(
        "App started env=%s whitelist_enabled=%s trusted_hops=%d log_level=%s",
        settings.app_environment,
        settings.ip_whitelist_enabled,
        settings.trusted_hop_count,
        settings.log_level,
    )

    log_startup_banner(
        host=settings.listen_host,
        port=settings.listen_port,
        whitelist_enabled=settings.ip_whitelist_enabled,
        whitelist_entries=allow_list.describe(),
        trusted_hops=settings.trusted_hop_count,
        forwarded_header=settings.forwarded_header,
    )

    app.include_router(health_router)
    for router in routers:
        app.include_router(router)

    log_endpoints(app)

    return app


# Expose ASGI app for uvicorn
app = create_app()
