# tenantdb/api/deps.py
from __future__ import annotations

from fastapi import Request
from sqlalchemy.orm import Session

from tenantdb.tenancy.context import TenantBinding
from tenantdb.tenancy.runtime import Tenancy


def get_tenancy(request: Request) -> Tenancy:
    return request.app.state.tenancy


def get_tenant_binding(request: Request) -> TenantBinding:
    """
    Binding attached by the tenant middleware.
    Routes outside the exempt paths always have one; anything else is a wiring bug.
    """
    binding = getattr(request.state, "tenant_binding", None)
    if binding is None:
        raise RuntimeError("Request has no tenant binding")
    return binding


def get_tenant_session(request: Request) -> Session:
    """The only session a tenant-scoped route gets: bound to that tenant's database."""
    return get_tenant_binding(request).session
