# tenantdb/core/tenant.py
from __future__ import annotations

import re
from typing import Optional

from .errors import InvalidTenantId, MissingTenantId

TENANT_HEADER = "X-Tenant-ID"
_ALLOWED = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


def parse_tenant_id(raw: Optional[str], *, header: Optional[str] = None) -> str:
    """
    Validate a tenant id taken from the tenant header.
    Only allows simple slug-like values (letters, digits, underscore, dash), which
    covers UUIDs. Raises MissingTenantId if the value is missing, blank or invalid.
    """
    header = header or TENANT_HEADER
    if raw is None:
        raise MissingTenantId(f"{header} header is required")
    tid = raw.strip()
    if not tid:
        raise MissingTenantId(f"{header} header is empty")
    if not _ALLOWED.match(tid):
        raise MissingTenantId(f"{header} header is malformed")
    return tid


def validate_tenant_id(tenant_id: str) -> str:
    """Registration-side check: ids must be reachable through the tenant header."""
    if not isinstance(tenant_id, str) or not _ALLOWED.fullmatch(tenant_id):
        raise InvalidTenantId(
            "Tenant id may only contain letters, digits, underscores and dashes (1-64)",
            tenant_id=tenant_id if isinstance(tenant_id, str) else None,
        )
    return tenant_id
