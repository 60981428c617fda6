from fastapi import Depends, FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.responses import Response

from ispsync.api.api_keys import router as api_keys_router
from ispsync.api.auto_suspend import router as auto_suspend_router
from ispsync.api.deps import limiter, require_user_auth
from ispsync.api.gateway import router as gateway_router
from ispsync.api.network import router as network_router
from ispsync.api.webhooks import router as webhooks_router
from ispsync.errors import register_error_handlers
from ispsync.logging import configure_logging
from ispsync.observability import ObservabilityMiddleware

configure_logging()

app = FastAPI(title="ISP Network Policy Sync")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(network_router, dependencies=[Depends(require_user_auth)])
_include_api_router(api_keys_router, dependencies=[Depends(require_user_auth)])
# Also reachable with the cron secret alone, so no blanket operator auth.
_include_api_router(auto_suspend_router)

app.include_router(webhooks_router)
app.include_router(gateway_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
