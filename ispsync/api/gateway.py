from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ispsync.api.deps import get_db
from ispsync.services.api_gateway import GatewayRequest, api_gateway

router = APIRouter(prefix="/v1", tags=["tenant-api"])

_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _handle(request: Request, db: Session, resource: str, resource_id: str | None):
    gateway_request = GatewayRequest(
        method=request.method,
        path=request.url.path,
        resource=resource,
        resource_id=resource_id,
        api_key=request.headers.get("x-api-key"),
        params=dict(request.query_params),
        body=await request.body(),
        request_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    response = await run_in_threadpool(api_gateway.handle, db, gateway_request)
    return JSONResponse(
        status_code=response.status_code, content=response.body, headers=response.headers
    )


@router.api_route("/{resource}", methods=_METHODS)
async def tenant_collection(resource: str, request: Request, db: Session = Depends(get_db)):
    return await _handle(request, db, resource, None)


@router.api_route("/{resource}/{resource_id}", methods=_METHODS)
async def tenant_item(
    resource: str, resource_id: str, request: Request, db: Session = Depends(get_db)
):
    return await _handle(request, db, resource, resource_id)
