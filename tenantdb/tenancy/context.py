# tenantdb/tenancy/context.py
"""Request-local tenant binding, carried in a context variable."""
from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

_binding_ctx: contextvars.ContextVar[Optional["TenantBinding"]] = contextvars.ContextVar(
    "tenant_binding", default=None
)


@dataclass(frozen=True)
class TenantBinding:
    """
    Association between one unit of work and one tenant database.

    The session is bound to a single pooled connection of that database; it is the
    only handle downstream code gets, so it cannot address another database.
    """

    tenant_id: str
    database: str
    connection: Connection
    session: Session


def current_binding() -> Optional[TenantBinding]:
    """Binding of the current execution context, or None outside a tenant scope."""
    return _binding_ctx.get()


def require_binding() -> TenantBinding:
    binding = _binding_ctx.get()
    if binding is None:
        raise RuntimeError("No tenant binding in this context")
    return binding


def activate(binding: TenantBinding) -> contextvars.Token:
    """Make `binding` current; pass the token to `deactivate` on every exit path."""
    return _binding_ctx.set(binding)


def deactivate(token: contextvars.Token) -> None:
    _binding_ctx.reset(token)
