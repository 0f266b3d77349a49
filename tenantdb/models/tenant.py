# tenantdb/models/tenant.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    # UUID string generated by the registry when the caller does not supply one
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Tenant display name")

    # Nullable only so legacy rows (name kept in `data`) can load and be backfilled
    database_name: Mapped[Optional[str]] = mapped_column(
        String(63),
        unique=True,
        nullable=True,
        comment="Physical database holding this tenant's data",
    )

    data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Free-form tenant attributes"
    )

    __table_args__ = (Index("ix_tenants_name", "name"),)

    # ---------------------------- Validators ---------------------------------

    @validates("id")
    def _validate_id(self, key: str, value: str) -> str:
        if value is None:
            raise ValueError("id cannot be null")
        v = value.strip()
        if not v:
            raise ValueError("id cannot be empty")
        if len(v) > 64:
            raise ValueError("id must be 64 characters or fewer")
        return v

    @validates("name")
    def _validate_name(self, key: str, value: str) -> str:
        """Trim and ensure non-empty name (DB also enforces NOT NULL)."""
        if value is None:
            raise ValueError("name cannot be null")
        v = value.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

    # --------------------------- Convenience ---------------------------------

    @property
    def legacy_database_name(self) -> Optional[str]:
        """Database name stored in the attribute blob by older tenant records."""
        value = (self.data or {}).get("database_name")
        if value is None:
            return None
        return str(value).strip() or None

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id!r}, name={self.name!r}, database_name={self.database_name!r})>"
