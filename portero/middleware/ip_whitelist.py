"""Gatekeeper middleware: reject requests whose client address is not allowed."""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from ..allowlist import AllowList
from ..security import ClientAddressResolver

DEFAULT_REJECTION_MESSAGE = (
    "Acceso prohibido: Su dirección IP ({ip}) no está autorizada."
)


class IPWhitelistMiddleware(BaseHTTPMiddleware):
    """Evaluate every request against a shared, read-only allow-list.

    - Resolves the client address with ``resolver`` (proxy-hop aware).
    - Allowed requests continue unmodified to the next stage.
    - Denied requests end here with a 403 whose body names the rejected
      address; nothing further down the stack runs.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        allow_list: AllowList,
        resolver: ClientAddressResolver,
        rejection_message: str = DEFAULT_REJECTION_MESSAGE,
    ):
        super().__init__(app)
        self.allow_list = allow_list
        self.resolver = resolver
        self.rejection_message = rejection_message
        self.logger = logging.getLogger("uvicorn.error")

    def _reject(self, client_ip: str) -> JSONResponse:
        message = self.rejection_message.replace("{ip}", client_ip)
        return JSONResponse(status_code=403, content={"error": message})

    async def dispatch(self, request: Request, call_next):
        client_ip = self.resolver.from_request(request)
        # read back by LoggingMiddleware so the address is resolved once
        request.state.client_ip = client_ip
        self.logger.info("Request received from IP: %s", client_ip or "-")

        decision = self.allow_list.evaluate(client_ip)
        if not decision.allowed:
            self.logger.warning(
                "Blocked %s %s from %s: %s",
                request.method,
                request.url.path,
                client_ip or "-",
                decision.reason,
            )
            return self._reject(client_ip)

        return await call_next(request)
