import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ispsync.metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY


def _route_path(request: Request) -> str:
    # Use the route template so ids do not explode label cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            labels = {
                "method": request.method,
                "path": _route_path(request),
                "status": status,
            }
            REQUEST_COUNT.labels(**labels).inc()
            REQUEST_LATENCY.labels(**labels).observe(time.monotonic() - start)
            if status.startswith("5"):
                REQUEST_ERRORS.labels(**labels).inc()
