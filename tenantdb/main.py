# tenantdb/main.py
"""
FastAPI application for tenantdb.

Every non-exempt request is routed to the caller's own tenant database by
`TenantMiddleware`; routes get their session through `Depends(get_tenant_session)`.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tenantdb import __version__
from tenantdb.api import api_router
from tenantdb.api.errors import install_error_handlers
from tenantdb.core.config import Settings, get_settings
from tenantdb.logging_setup import (
    bind_request_id,
    install_access_logger,
    reset_request_id,
    setup_logging,
)
from tenantdb.middleware.tenant import TenantMiddleware
from tenantdb.tenancy.runtime import Tenancy, build_tenancy

logger = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "Health", "description": "Service, database and pool health checks"},
    {"name": "Products", "description": "Tenant-scoped products"},
    {"name": "metrics", "description": "Prometheus exposition"},
]


def create_app(
    settings: Optional[Settings] = None,
    tenancy: Optional[Tenancy] = None,
) -> FastAPI:
    """
    Build the application.

    `tenancy` defaults to one built from `settings`; the app owns it and disposes its
    pools on shutdown.
    """
    settings = settings or get_settings()
    tenancy = tenancy or build_tenancy(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s starting up", settings.app_name)
        logger.info("Central DB (masked): %s", settings.masked_database_url)
        yield
        tenancy.close()

    app = FastAPI(
        title=settings.app_name,
        description="Per-tenant database provisioning and request routing",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=TAGS_METADATA,
    )
    app.state.settings = settings
    app.state.tenancy = tenancy

    # Middleware stack: the last added is outermost and runs first on requests.
    # Tenant (inner) -> request id -> access log -> CORS (outer)
    app.add_middleware(
        TenantMiddleware,
        tenancy=tenancy,
        header=settings.tenant_header,
        exempt_paths=settings.tenant_exempt_paths,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Assign a request id (inbound header wins) visible to handlers and logs."""
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = req_id
        token = bind_request_id(req_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)
        response.headers["x-request-id"] = req_id
        return response

    install_access_logger(app, tenant_header=settings.tenant_header)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=bool(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-request-id", settings.tenant_header],
    )

    install_error_handlers(app)
    app.include_router(api_router)

    return app


def serve_app() -> FastAPI:
    """Uvicorn factory (`uvicorn tenantdb.main:serve_app --factory`): logging + app."""
    settings = get_settings()
    setup_logging(settings.log_level)
    return create_app(settings)
