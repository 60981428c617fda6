"""Small helpers shared by the service layer.

Anything here that can reject caller input raises ``HTTPException`` so
services can use it straight from a route.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, TypeVar

from fastapi import HTTPException

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

ModelT = TypeVar("ModelT")

CENT = Decimal("0.01")


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=message)


# -- identifiers ---------------------------------------------------------------


def coerce_uuid(value):
    """``None`` passes through; anything else must look like a UUID."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def parse_uuid(value, label: str):
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError) as exc:
        raise _bad_request(f"Invalid {label}") from exc


def validate_enum(value, enum_cls, label: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise _bad_request(f"Invalid {label}") from exc


# -- list queries --------------------------------------------------------------


def apply_ordering(query, order_by: str, order_dir: str, allowed_columns: dict):
    """Order ``query`` by one of ``allowed_columns``, ascending unless ``desc``."""
    column = allowed_columns.get(order_by)
    if column is None:
        allowed = ", ".join(sorted(allowed_columns))
        raise _bad_request(f"Invalid order_by. Allowed: {allowed}")
    return query.order_by(column.desc() if order_dir == "desc" else column.asc())


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)


def get_for_tenant_or_404(
    db: Session, model: type[ModelT], tenant_id, entity_id, detail: str | None = None
) -> ModelT:
    """Load a row owned by ``tenant_id``.

    Rows of other tenants and malformed ids both come back as 404 so callers
    cannot probe for ids outside their tenant.
    """
    try:
        entity = db.get(model, coerce_uuid(entity_id))
    except (TypeError, ValueError):
        entity = None
    if entity is None or entity.tenant_id != coerce_uuid(tenant_id):
        raise HTTPException(status_code=404, detail=detail or f"{model.__name__} not found")
    return entity


# -- time and money ------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def round_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
