def list_response(items: list, limit: int, offset: int, total: int | None = None) -> dict:
    payload = {"items": items, "count": len(items), "limit": limit, "offset": offset}
    if total is not None:
        payload["total"] = total
    return payload


class ListResponseMixin:
    """Adds ``list_response`` to tenant-scoped service classes.

    Subclasses implement ``list(db, tenant_id, *filters, limit=, offset=)``.
    """

    @classmethod
    def list_response(cls, db, tenant_id, *args, limit: int, offset: int, **kwargs):
        items = cls.list(db, tenant_id, *args, limit=limit, offset=offset, **kwargs)
        return list_response(items, limit, offset)
