"""Integration registry.

Each tenant configures its network-control endpoints here. Automatic
triggers only ever consult the single enabled integration of a tenant.
"""

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ispsync.logging import get_logger
from ispsync.models.network import (
    NetworkIntegration,
    NetworkSyncLog,
    NetworkSyncTask,
    ProviderType,
)
from ispsync.schemas.network import NetworkIntegrationCreate, NetworkIntegrationUpdate
from ispsync.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_for_tenant_or_404,
    utcnow,
    validate_enum,
)
from ispsync.services.credential_crypto import encrypt_integration_secrets
from ispsync.services.network_providers import NetworkProvider, get_provider
from ispsync.services.response import ListResponseMixin

logger = get_logger(__name__)


def get_enabled_integration(db: Session, tenant_id) -> NetworkIntegration | None:
    return (
        db.query(NetworkIntegration)
        .filter(NetworkIntegration.tenant_id == coerce_uuid(tenant_id))
        .filter(NetworkIntegration.is_enabled.is_(True))
        .filter(NetworkIntegration.archived_at.is_(None))
        .order_by(NetworkIntegration.updated_at.desc())
        .first()
    )


def resolve_provider(integration: NetworkIntegration) -> NetworkProvider:
    return get_provider(integration.provider_type)


def _ensure_no_other_enabled(db: Session, tenant_id, integration_id=None) -> None:
    query = (
        db.query(NetworkIntegration.id)
        .filter(NetworkIntegration.tenant_id == coerce_uuid(tenant_id))
        .filter(NetworkIntegration.is_enabled.is_(True))
    )
    if integration_id is not None:
        query = query.filter(NetworkIntegration.id != coerce_uuid(integration_id))
    if query.first():
        raise HTTPException(
            status_code=409,
            detail="Another network integration is already enabled for this tenant",
        )


def _commit_or_conflict(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=409,
            detail="Another network integration is already enabled for this tenant",
        ) from exc


class NetworkIntegrations(ListResponseMixin):
    @staticmethod
    def get(db: Session, tenant_id, integration_id) -> NetworkIntegration:
        return get_for_tenant_or_404(
            db, NetworkIntegration, tenant_id, integration_id, "Network integration not found"
        )

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        provider_type: str | None = None,
        include_archived: bool = False,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(NetworkIntegration).filter(
            NetworkIntegration.tenant_id == coerce_uuid(tenant_id)
        )
        if provider_type:
            query = query.filter(
                NetworkIntegration.provider_type
                == validate_enum(provider_type, ProviderType, "provider_type")
            )
        if not include_archived:
            query = query.filter(NetworkIntegration.archived_at.is_(None))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": NetworkIntegration.created_at, "name": NetworkIntegration.name},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def upsert(
        db: Session,
        tenant_id,
        payload: NetworkIntegrationCreate | NetworkIntegrationUpdate,
        integration_id=None,
    ) -> NetworkIntegration:
        if integration_id is None:
            if not isinstance(payload, NetworkIntegrationCreate):
                payload = NetworkIntegrationCreate.model_validate(
                    payload.model_dump(exclude_unset=True)
                )
            data = encrypt_integration_secrets(payload.model_dump())
            if data.get("is_enabled"):
                _ensure_no_other_enabled(db, tenant_id)
            integration = NetworkIntegration(tenant_id=coerce_uuid(tenant_id), **data)
            db.add(integration)
        else:
            integration = NetworkIntegrations.get(db, tenant_id, integration_id)
            data = encrypt_integration_secrets(payload.model_dump(exclude_unset=True))
            if data.get("is_enabled"):
                if integration.archived_at is not None:
                    raise HTTPException(
                        status_code=400, detail="Archived integrations cannot be enabled"
                    )
                _ensure_no_other_enabled(db, tenant_id, integration.id)
            for key, value in data.items():
                setattr(integration, key, value)
        _commit_or_conflict(db)
        db.refresh(integration)
        logger.info(
            "NETWORK_INTEGRATION_SAVED tenant_id=%s integration_id=%s provider=%s enabled=%s",
            integration.tenant_id,
            integration.id,
            integration.provider_type.value,
            integration.is_enabled,
        )
        return integration

    @staticmethod
    def toggle_enabled(db: Session, tenant_id, integration_id, enabled: bool):
        integration = NetworkIntegrations.get(db, tenant_id, integration_id)
        if enabled:
            if integration.archived_at is not None:
                raise HTTPException(
                    status_code=400, detail="Archived integrations cannot be enabled"
                )
            _ensure_no_other_enabled(db, tenant_id, integration.id)
        integration.is_enabled = enabled
        _commit_or_conflict(db)
        db.refresh(integration)
        logger.info(
            "NETWORK_INTEGRATION_TOGGLED integration_id=%s enabled=%s",
            integration.id,
            enabled,
        )
        return integration

    @staticmethod
    def delete(db: Session, tenant_id, integration_id) -> str:
        """Remove an integration; archive it instead when history points at it."""
        integration = NetworkIntegrations.get(db, tenant_id, integration_id)
        referenced = (
            db.query(NetworkSyncTask.id)
            .filter(NetworkSyncTask.integration_id == integration.id)
            .first()
            or db.query(NetworkSyncLog.id)
            .filter(NetworkSyncLog.integration_id == integration.id)
            .first()
        )
        if referenced:
            integration.is_enabled = False
            integration.archived_at = utcnow()
            db.commit()
            logger.info("NETWORK_INTEGRATION_ARCHIVED integration_id=%s", integration.id)
            return "archived"
        db.delete(integration)
        db.commit()
        logger.info("NETWORK_INTEGRATION_DELETED integration_id=%s", integration_id)
        return "deleted"


network_integrations = NetworkIntegrations()
