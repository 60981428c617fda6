"""Resource handlers behind the tenant API gateway.

Handlers only ever see the tenant id of the authenticated key; every query
is filtered on it, so a record owned by another tenant is indistinguishable
from a missing one.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ispsync.config import settings
from ispsync.logging import get_logger
from ispsync.models.api_access import ApiKey
from ispsync.models.billing import Bill, BillStatus, Package, Payment, PaymentMethod
from ispsync.models.customer import ConnectionStatus, Customer
from ispsync.models.network import SyncAction, SyncMode
from ispsync.models.tenant import Tenant
from ispsync.schemas.gateway import (
    BillOut,
    CustomerCreateIn,
    CustomerOut,
    CustomerUpdateIn,
    PackageOut,
    PaymentOut,
)
from ispsync.services import sync_queue
from ispsync.services.common import coerce_uuid
from ispsync.services.network_integrations import get_enabled_integration

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20

_STATUS_ACTIONS = {
    ConnectionStatus.active: SyncAction.enable,
    ConnectionStatus.suspended: SyncAction.disable,
}


class GatewayError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def validation_error(message: str) -> GatewayError:
    return GatewayError(400, "VALIDATION_ERROR", message)


def not_found(label: str) -> GatewayError:
    return GatewayError(404, "RESOURCE_NOT_FOUND", f"{label} not found")


@dataclass
class ResourceContext:
    tenant_id: Any
    api_key: ApiKey
    method: str
    params: dict = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> dict:
        if not self.body:
            raise validation_error("Request body is required")
        try:
            data = json.loads(self.body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise validation_error("Request body must be valid JSON") from exc
        if not isinstance(data, dict):
            raise validation_error("Request body must be a JSON object")
        return data


@dataclass
class ResourceResult:
    data: Any
    status_code: int = 200
    pagination: dict | None = None


def _parse_body(ctx: ResourceContext, schema: type[BaseModel]):
    try:
        return schema.model_validate(ctx.json())
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise validation_error(f"{loc}: {first.get('msg')}") from exc


def _int_param(params: dict, name: str, default: int) -> int:
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise validation_error(f"{name} must be an integer") from exc


def _uuid_param(params: dict, name: str):
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        return coerce_uuid(raw)
    except (TypeError, ValueError) as exc:
        raise validation_error(f"Invalid {name}") from exc


def _enum_param(params: dict, name: str, enum_cls):
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        return enum_cls(raw)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise validation_error(f"Invalid {name}. Allowed: {allowed}") from exc


def _paginate(query, params: dict):
    page = max(_int_param(params, "page", 1), 1)
    limit = _int_param(params, "limit", DEFAULT_PAGE_SIZE)
    limit = min(max(limit, 1), settings.api_page_size_max)
    total = query.count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
    return items, pagination


def _owned(db: Session, model, tenant_id, resource_id, label: str):
    try:
        entity_id = coerce_uuid(resource_id)
    except (TypeError, ValueError):
        raise not_found(label) from None
    entity = db.get(model, entity_id)
    if entity is None or entity.tenant_id != tenant_id:
        raise not_found(label)
    return entity


def _dump(schema: type[BaseModel], obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


class ResourceHandler:
    """Routes a gateway call to list/retrieve/create/update.

    Subclasses list the HTTP methods they accept in ``methods``.
    """

    methods: tuple[str, ...] = ("GET",)

    def handle(self, db: Session, ctx: ResourceContext, resource_id: str | None):
        method = ctx.method
        if method not in self.methods:
            raise GatewayError(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")
        if method == "GET":
            if resource_id is None:
                return self.list(db, ctx)
            return self.retrieve(db, ctx, resource_id)
        if method == "POST" and resource_id is None:
            return self.create(db, ctx)
        if method in ("PUT", "PATCH") and resource_id is not None:
            return self.update(db, ctx, resource_id)
        raise GatewayError(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")

    def list(self, db: Session, ctx: ResourceContext) -> ResourceResult:
        raise GatewayError(405, "METHOD_NOT_ALLOWED", "Listing not supported")

    def retrieve(self, db: Session, ctx: ResourceContext, resource_id: str) -> ResourceResult:
        raise GatewayError(405, "METHOD_NOT_ALLOWED", "Retrieval not supported")

    def create(self, db: Session, ctx: ResourceContext) -> ResourceResult:
        raise GatewayError(405, "METHOD_NOT_ALLOWED", "Creation not supported")

    def update(self, db: Session, ctx: ResourceContext, resource_id: str) -> ResourceResult:
        raise GatewayError(405, "METHOD_NOT_ALLOWED", "Update not supported")


class CustomersResource(ResourceHandler):
    methods = ("GET", "POST", "PUT", "PATCH")

    def list(self, db, ctx):
        query = db.query(Customer).filter(Customer.tenant_id == ctx.tenant_id)
        status = _enum_param(ctx.params, "status", ConnectionStatus)
        if status:
            query = query.filter(Customer.connection_status == status)
        search = (ctx.params.get("search") or "").strip()
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern))
            )
        query = query.order_by(Customer.created_at.desc())
        items, pagination = _paginate(query, ctx.params)
        return ResourceResult(
            data=[_dump(CustomerOut, item) for item in items], pagination=pagination
        )

    def retrieve(self, db, ctx, resource_id):
        customer = _owned(db, Customer, ctx.tenant_id, resource_id, "Customer")
        return ResourceResult(data=_dump(CustomerOut, customer))

    def create(self, db, ctx):
        payload = _parse_body(ctx, CustomerCreateIn)
        if payload.package_id is not None:
            self._check_package(db, ctx.tenant_id, payload.package_id)
        customer = Customer(
            tenant_id=ctx.tenant_id,
            connection_status=ConnectionStatus.pending,
            **payload.model_dump(),
        )
        db.add(customer)
        db.commit()
        db.refresh(customer)
        logger.info(
            "API_CUSTOMER_CREATED customer_id=%s tenant_id=%s api_key_id=%s",
            customer.id,
            ctx.tenant_id,
            ctx.api_key.id,
        )
        return ResourceResult(data=_dump(CustomerOut, customer), status_code=201)

    def update(self, db, ctx, resource_id):
        customer = _owned(db, Customer, ctx.tenant_id, resource_id, "Customer")
        payload = _parse_body(ctx, CustomerUpdateIn)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise validation_error("No updatable fields supplied")
        for key in ("name", "phone", "connection_status"):
            if key in changes and changes[key] is None:
                raise validation_error(f"{key} cannot be null")
        if changes.get("package_id") is not None:
            self._check_package(db, ctx.tenant_id, changes["package_id"])

        previous_status = customer.connection_status
        for key, value in changes.items():
            setattr(customer, key, value)
        db.commit()
        db.refresh(customer)

        data = _dump(CustomerOut, customer)
        if customer.connection_status != previous_status:
            task = self._queue_status_sync(db, ctx, customer)
            data["network_sync_task_id"] = str(task.id) if task else None
        return ResourceResult(data=data)

    @staticmethod
    def _check_package(db: Session, tenant_id, package_id) -> None:
        package = db.get(Package, package_id)
        if package is None or package.tenant_id != tenant_id:
            raise validation_error("Unknown package_id")

    @staticmethod
    def _queue_status_sync(db: Session, ctx: ResourceContext, customer: Customer):
        action = _STATUS_ACTIONS.get(customer.connection_status)
        if action is None or not customer.network_username:
            return None
        integration = get_enabled_integration(db, ctx.tenant_id)
        if integration is None or integration.sync_mode == SyncMode.manual:
            return None
        return sync_queue.enqueue(
            db,
            ctx.tenant_id,
            integration.id,
            customer.id,
            action,
            triggered_by="api",
            triggered_by_user=f"api_key:{ctx.api_key.id}",
        )


class BillsResource(ResourceHandler):
    def list(self, db, ctx):
        query = db.query(Bill).filter(Bill.tenant_id == ctx.tenant_id)
        status = _enum_param(ctx.params, "status", BillStatus)
        if status:
            query = query.filter(Bill.status == status)
        customer_id = _uuid_param(ctx.params, "customer_id")
        if customer_id:
            query = query.filter(Bill.customer_id == customer_id)
        query = query.order_by(Bill.due_date.desc())
        items, pagination = _paginate(query, ctx.params)
        return ResourceResult(
            data=[_dump(BillOut, item) for item in items], pagination=pagination
        )

    def retrieve(self, db, ctx, resource_id):
        return ResourceResult(
            data=_dump(BillOut, _owned(db, Bill, ctx.tenant_id, resource_id, "Bill"))
        )


class PaymentsResource(ResourceHandler):
    def list(self, db, ctx):
        query = db.query(Payment).filter(Payment.tenant_id == ctx.tenant_id)
        customer_id = _uuid_param(ctx.params, "customer_id")
        if customer_id:
            query = query.filter(Payment.customer_id == customer_id)
        method = _enum_param(ctx.params, "method", PaymentMethod)
        if method:
            query = query.filter(Payment.method == method)
        query = query.order_by(Payment.paid_at.desc())
        items, pagination = _paginate(query, ctx.params)
        return ResourceResult(
            data=[_dump(PaymentOut, item) for item in items], pagination=pagination
        )

    def retrieve(self, db, ctx, resource_id):
        return ResourceResult(
            data=_dump(PaymentOut, _owned(db, Payment, ctx.tenant_id, resource_id, "Payment"))
        )


class PackagesResource(ResourceHandler):
    def list(self, db, ctx):
        query = (
            db.query(Package)
            .filter(Package.tenant_id == ctx.tenant_id)
            .order_by(Package.monthly_price.asc())
        )
        items, pagination = _paginate(query, ctx.params)
        return ResourceResult(
            data=[_dump(PackageOut, item) for item in items], pagination=pagination
        )

    def retrieve(self, db, ctx, resource_id):
        return ResourceResult(
            data=_dump(PackageOut, _owned(db, Package, ctx.tenant_id, resource_id, "Package"))
        )


class StatusResource(ResourceHandler):
    def list(self, db, ctx):
        tenant = db.get(Tenant, ctx.tenant_id)
        return ResourceResult(
            data={
                "api_enabled": bool(tenant and tenant.api_enabled),
                "scope": ctx.api_key.scope.value,
                "tenant_id": str(ctx.tenant_id),
            }
        )

    def retrieve(self, db, ctx, resource_id):
        raise GatewayError(404, "NOT_FOUND", "Unknown resource")


RESOURCE_HANDLERS: dict[str, ResourceHandler] = {
    "customers": CustomersResource(),
    "bills": BillsResource(),
    "payments": PaymentsResource(),
    "packages": PackagesResource(),
    "status": StatusResource(),
}
