# tenantdb/api/health.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from tenantdb.core.database import check_database_connection
from tenantdb.tenancy.runtime import Tenancy

from .deps import get_tenancy

router = APIRouter(tags=["Health"])


def _no_store(request: Request, response: Response) -> None:
    rid = request.headers.get("x-request-id")
    if rid:
        response.headers["x-request-id"] = rid
    response.headers["Cache-Control"] = "no-store"


@router.get("/health")
def health(request: Request, response: Response) -> Dict[str, str]:
    """Simple liveness."""
    _no_store(request, response)
    return {"status": "ok"}


# Common alias used by some platforms
@router.get("/healthz")
def healthz(request: Request, response: Response) -> Dict[str, str]:
    return health(request, response)


@router.get("/health/db")
async def health_db(
    request: Request, response: Response, tenancy: Tenancy = Depends(get_tenancy)
) -> Dict[str, Any]:
    """Central registry database check; 503 when unreachable."""
    _no_store(request, response)
    ok, message = await run_in_threadpool(check_database_connection, tenancy.central_engine)
    if not ok:
        response.status_code = 503
        # Keep driver details out of the response body
        message = "Database unreachable"
    return {
        "status": "ok" if ok else "degraded",
        "database": tenancy.settings.masked_database_url,
        "message": message,
    }


@router.get("/health/pools")
def health_pools(
    request: Request, response: Response, tenancy: Tenancy = Depends(get_tenancy)
) -> Dict[str, Any]:
    """Per-tenant-database pool status."""
    _no_store(request, response)
    tenancy.engines.evict_idle()
    pools = tenancy.engines.stats()
    return {"status": "ok", "count": len(pools), "pools": pools}
