"""Module entrypoint: run the Portero FastAPI app with Uvicorn."""

import uvicorn
from pydantic import ValidationError

from .config import get_settings


def main() -> None:
    """Start Uvicorn pointing at the packaged ASGI app."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        # deferred: importing the app module builds the app from settings
        from .app import _please_die_gracefully

        _please_die_gracefully(exc)

    uvicorn.run(
        "portero.app:app",
        host=settings.listen_host,
        port=settings.listen_port,
        # the gatekeeper resolves forwarded addresses itself
        proxy_headers=False,
    )


if __name__ == "__main__":
    main()
