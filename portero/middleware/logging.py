import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fastapi import Request

from ..security import ClientAddressResolver


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, resolver: ClientAddressResolver, enabled: bool = True):
        super().__init__(app)
        self.resolver = resolver
        self.enabled = enabled
        self.logger = logging.getLogger("uvicorn.error")

    def _log_request(self, *, method: str, route: str, status: int, duration_ms: int, client_ip: str, req_id: str) -> None:
        if not self.enabled:
            return
        self.logger.info(
            "%s %s -> %s %dms ip=%s req_id=%s",
            method,
            route,
            status,
            duration_ms,
            client_ip,
            req_id,
        )

    def _client_ip(self, request: Request) -> str:
        """Address resolved by the gatekeeper, or resolved here when it is off."""
        client_ip = getattr(request.state, "client_ip", None)
        if client_ip is None:
            client_ip = self.resolver.from_request(request)
            self.logger.info("Request received from IP: %s", client_ip or "-")
        return client_ip

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        req_id = str(uuid.uuid4())
        method = request.method
        path = request.url.path

        # Attach request id to request.state for downstream handlers
        request.state.request_id = req_id

        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            status = response.status_code if response else 500
            route = getattr(request.scope.get("route"), "path", path)
            self._log_request(
                method=method,
                route=route,
                status=status,
                duration_ms=duration_ms,
                client_ip=self._client_ip(request) or "-",
                req_id=req_id,
            )
            if response is not None:
                response.headers["X-Request-ID"] = req_id
                response.headers["X-Process-Time"] = f"{duration_ms}ms"
