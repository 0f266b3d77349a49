# tenantdb/middleware/tenant.py
"""
Tenant resolution middleware.

For every non-exempt request: read the tenant header, resolve the tenant (registry
lookup, ensure database, ensure schema), check out a connection bound to the tenant's
database, run the route, release the binding. Rejections short-circuit with the shared
error envelope; nothing downstream runs without a binding.

Blocking steps run in the threadpool. Releasing the binding is shielded from
cancellation so a dropped client never strands a pooled connection.

Limitation: the binding is released once the route returns its response object, so a
StreamingResponse must not read from the tenant session while streaming.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

import anyio
from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from tenantdb.api.errors import tenancy_error_response
from tenantdb.core.config import DEFAULT_EXEMPT_PATHS
from tenantdb.core.errors import TenancyError
from tenantdb.core.metrics import TENANT_REJECTIONS
from tenantdb.core.tenant import TENANT_HEADER
from tenantdb.tenancy.context import activate, deactivate
from tenantdb.tenancy.runtime import Tenancy

logger = logging.getLogger(__name__)


class TenantMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        tenancy: Tenancy,
        header: str = TENANT_HEADER,
        exempt_paths: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(app)
        self.tenancy = tenancy
        self.header = header
        if exempt_paths is None:
            exempt_paths = DEFAULT_EXEMPT_PATHS
        self.exempt = tuple(p.rstrip("/") or "/" for p in exempt_paths)

    def is_exempt(self, path: str) -> bool:
        for prefix in self.exempt:
            if path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        # CORS preflight carries no tenant header
        if request.method == "OPTIONS" or self.is_exempt(request.url.path):
            return await call_next(request)

        raw = request.headers.get(self.header)
        try:
            tenant = await run_in_threadpool(
                self.tenancy.resolver.resolve, raw, header=self.header
            )
            # A binding opened for a request that was cancelled meanwhile must still be released
            with anyio.CancelScope(shield=True):
                binding = await run_in_threadpool(
                    self.tenancy.binder.open, tenant.id, tenant.database_name
                )
        except TenancyError as exc:
            TENANT_REJECTIONS.labels(reason=exc.code).inc()
            return tenancy_error_response(request, exc)

        request.state.tenant = tenant
        request.state.tenant_id = tenant.id
        request.state.tenant_binding = binding

        token = activate(binding)
        try:
            response = await call_next(request)
        finally:
            deactivate(token)
            with anyio.CancelScope(shield=True):
                await run_in_threadpool(self.tenancy.binder.release, binding)

        response.headers[self.header] = tenant.id
        return response
