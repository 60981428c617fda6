"""Tenant API keys.

Raw keys are shown once at creation; only their SHA-256 digest is stored.
"""

import hashlib
import secrets

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ispsync.logging import get_logger
from ispsync.models.api_access import ApiKey
from ispsync.schemas.api_keys import ApiKeyCreate
from ispsync.services.common import (
    apply_pagination,
    as_utc,
    coerce_uuid,
    get_for_tenant_or_404,
    utcnow,
)
from ispsync.services.response import ListResponseMixin

logger = get_logger(__name__)

API_KEY_PREFIX = "isp_"


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def find_by_raw_key(db: Session, raw_key: str) -> ApiKey | None:
    """Look a key up by its digest, whatever its state."""
    return db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(raw_key)).first()


def is_usable(api_key: ApiKey, now=None) -> bool:
    if not api_key.is_active or api_key.revoked_at is not None:
        return False
    expires_at = as_utc(api_key.expires_at)
    if expires_at is not None and expires_at <= (now or utcnow()):
        return False
    return True


class ApiKeys(ListResponseMixin):
    @staticmethod
    def create(
        db: Session, tenant_id, payload: ApiKeyCreate, created_by: str | None = None
    ) -> tuple[ApiKey, str]:
        raw_key = generate_api_key()
        api_key = ApiKey(
            tenant_id=coerce_uuid(tenant_id),
            name=payload.name,
            key_hash=hash_api_key(raw_key),
            key_prefix=raw_key[:12] + "...",
            scope=payload.scope,
            expires_at=payload.expires_at,
            created_by=created_by,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)
        logger.info(
            "API_KEY_CREATED api_key_id=%s tenant_id=%s scope=%s",
            api_key.id,
            api_key.tenant_id,
            api_key.scope.value,
        )
        return api_key, raw_key

    @staticmethod
    def get(db: Session, tenant_id, key_id) -> ApiKey:
        return get_for_tenant_or_404(db, ApiKey, tenant_id, key_id, "API key not found")

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        include_revoked: bool = False,
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(ApiKey).filter(ApiKey.tenant_id == coerce_uuid(tenant_id))
        if not include_revoked:
            query = query.filter(ApiKey.revoked_at.is_(None))
        query = query.order_by(ApiKey.created_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def revoke(db: Session, tenant_id, key_id, revoked_by: str | None = None) -> ApiKey:
        api_key = ApiKeys.get(db, tenant_id, key_id)
        if api_key.revoked_at is not None:
            raise HTTPException(status_code=409, detail="API key already revoked")
        api_key.is_active = False
        api_key.revoked_at = utcnow()
        api_key.revoked_by = revoked_by
        db.commit()
        db.refresh(api_key)
        logger.info("API_KEY_REVOKED api_key_id=%s revoked_by=%s", api_key.id, revoked_by)
        return api_key


api_keys = ApiKeys()
