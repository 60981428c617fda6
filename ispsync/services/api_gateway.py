"""Tenant API gateway.

Every request walks the same pipeline::

    receive -> authenticate -> authorize -> rate_limit_check -> dispatch -> audit_log

Whichever stage ends the request, exactly one ``ApiLog`` row is written for
it and the caller gets the standard envelope.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ispsync.logging import get_logger
from ispsync.metrics import API_GATEWAY_REQUESTS
from ispsync.models.api_access import ApiKey, ApiKeyScope, ApiLog
from ispsync.models.tenant import Tenant
from ispsync.services.api_keys import find_by_raw_key, is_usable
from ispsync.services.common import utcnow
from ispsync.services.rate_limit import get_rate_limiter
from ispsync.services.tenant_resources import (
    RESOURCE_HANDLERS,
    GatewayError,
    ResourceContext,
    ResourceResult,
)

logger = get_logger(__name__)

API_VERSION = "v1"
READ_METHODS = ("GET", "HEAD")


@dataclass
class GatewayRequest:
    method: str
    path: str
    resource: str
    resource_id: str | None = None
    api_key: str | None = None
    params: dict = field(default_factory=dict)
    body: bytes = b""
    request_ip: str | None = None
    user_agent: str | None = None


@dataclass
class GatewayResponse:
    status_code: int
    body: dict
    headers: dict = field(default_factory=dict)


@dataclass
class _AuditState:
    tenant_id: object = None
    api_key_id: object = None
    authenticated: bool = False


def success_envelope(result: ResourceResult) -> dict:
    body = {"success": True, "data": result.data, "version": API_VERSION}
    if result.pagination is not None:
        body["pagination"] = result.pagination
    return body


def error_envelope(code: str, message: str) -> dict:
    return {
        "success": False,
        "error": {"code": code, "message": message},
        "version": API_VERSION,
    }


class ApiGateway:
    def handle(self, db: Session, request: GatewayRequest) -> GatewayResponse:
        started = time.monotonic()
        method = request.method.upper()
        state = _AuditState()
        headers: dict = {}
        error_message = None
        try:
            api_key = self._authenticate(db, request, state)
            self._authorize(api_key, method)
            self._check_rate_limit(api_key, headers)
            result = self._dispatch(db, request, api_key, method)
            status_code, body = result.status_code, success_envelope(result)
        except GatewayError as exc:
            db.rollback()
            status_code, body = exc.status_code, error_envelope(exc.code, exc.message)
            error_message = exc.message
        except Exception as exc:
            db.rollback()
            logger.exception(
                "API_GATEWAY_ERROR method=%s path=%s tenant_id=%s",
                method,
                request.path,
                state.tenant_id,
            )
            status_code = 500
            body = error_envelope("INTERNAL_ERROR", "Internal server error")
            error_message = f"{type(exc).__name__}: {exc}"

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self._audit(db, request, method, state, status_code, error_message, elapsed_ms)
        API_GATEWAY_REQUESTS.labels(
            resource=request.resource if request.resource in RESOURCE_HANDLERS else "unknown",
            status=str(status_code),
        ).inc()
        return GatewayResponse(status_code=status_code, body=body, headers=headers)

    @staticmethod
    def _authenticate(db: Session, request: GatewayRequest, state: _AuditState) -> ApiKey:
        raw_key = (request.api_key or "").strip()
        if not raw_key:
            raise GatewayError(401, "MISSING_API_KEY", "API key required (x-api-key header)")
        api_key = find_by_raw_key(db, raw_key)
        if api_key is None:
            raise GatewayError(401, "INVALID_API_KEY", "Invalid API key")
        state.tenant_id = api_key.tenant_id
        state.api_key_id = api_key.id
        tenant = db.get(Tenant, api_key.tenant_id)
        if not is_usable(api_key) or tenant is None or not tenant.api_enabled:
            raise GatewayError(403, "API_KEY_INACTIVE", "API key is inactive or expired")
        state.authenticated = True
        return api_key

    @staticmethod
    def _authorize(api_key: ApiKey, method: str) -> None:
        if method not in READ_METHODS and api_key.scope != ApiKeyScope.read_write:
            raise GatewayError(
                403, "INSUFFICIENT_PERMISSIONS", "This API key has read-only access"
            )

    @staticmethod
    def _check_rate_limit(api_key: ApiKey, headers: dict) -> None:
        limiter = get_rate_limiter()
        allowed = limiter.hit(api_key.id)
        headers["X-RateLimit-Limit"] = str(limiter.item.amount)
        headers["X-RateLimit-Remaining"] = str(limiter.remaining(api_key.id))
        if not allowed:
            logger.info("API_RATE_LIMITED api_key_id=%s", api_key.id)
            raise GatewayError(429, "RATE_LIMIT_EXCEEDED", "Rate limit exceeded")

    @staticmethod
    def _dispatch(
        db: Session, request: GatewayRequest, api_key: ApiKey, method: str
    ) -> ResourceResult:
        handler = RESOURCE_HANDLERS.get(request.resource)
        if handler is None:
            raise GatewayError(404, "NOT_FOUND", f"Unknown resource '{request.resource}'")
        ctx = ResourceContext(
            tenant_id=api_key.tenant_id,
            api_key=api_key,
            method="GET" if method == "HEAD" else method,
            params=dict(request.params),
            body=request.body,
        )
        return handler.handle(db, ctx, request.resource_id)

    @staticmethod
    def _audit(
        db: Session,
        request: GatewayRequest,
        method: str,
        state: _AuditState,
        status_code: int,
        error_message: str | None,
        elapsed_ms: int,
    ) -> None:
        log = ApiLog(
            tenant_id=state.tenant_id,
            api_key_id=state.api_key_id,
            endpoint=request.path[:255],
            method=method[:10],
            status_code=status_code,
            response_time_ms=elapsed_ms,
            request_ip=(request.request_ip or None) and request.request_ip[:64],
            user_agent=(request.user_agent or None) and request.user_agent[:255],
            error_message=error_message,
        )
        db.add(log)
        if state.authenticated:
            api_key = db.get(ApiKey, state.api_key_id)
            if api_key is not None:
                api_key.last_used_at = utcnow()
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "API_AUDIT_WRITE_FAILED path=%s status=%s", request.path, status_code
            )


api_gateway = ApiGateway()
