"""ASGI middleware for lightweight observability."""

from typing import Callable, Any, Optional
import time
import uuid

from fastapi import FastAPI

from app.obs.context import clear_context, request_id_var
from app.obs.logger import log_event
from app.obs.metrics import record_timing, inc_counter


def _inbound_request_id(scope: dict) -> Optional[str]:
    for name, value in scope.get("headers") or []:
        if name.lower() == b"x-request-id":
            rid = value.decode("latin-1").strip()
            # Only accept ids short enough to be safe in logs and headers
            if rid and len(rid) <= 128:
                return rid
    return None


def _route_label(scope: dict) -> str:
    # FastAPI stores the matched route on the scope; use its template so
    # path parameters do not explode label cardinality
    route = scope.get("route")
    return getattr(route, "path", None) or scope.get("path", "")


class ObservabilityMiddleware:
    """Request id propagation, latency histogram, request counter and one log line per request."""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        clear_context()
        req_id = _inbound_request_id(scope) or str(uuid.uuid4())
        request_id_var.set(req_id)
        method = scope.get("method", "")
        start = time.monotonic()
        status_code = 500
        error: Optional[str] = None

        async def send_wrapper(message: dict):
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 200))
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", req_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            raise
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000.0
            route = _route_label(scope)
            record_timing("request_latency_ms", elapsed_ms, {"route": route})
            inc_counter("requests_total", {"route": route, "status": str(status_code)})
            log_event(
                "request",
                level="ERROR" if status_code >= 500 else "INFO",
                method=method,
                route=route,
                status=status_code,
                ms_total=round(elapsed_ms, 2),
                error=error,
            )
