# tenantdb/models/base.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, MetaData, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# -----------------------------------------------------------------------------
# Constraint names match the ones written by both migration sets
# -----------------------------------------------------------------------------
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class _ModelMixin:
    """created_at/updated_at audit columns shared by registry and tenant models."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return f"<{cls}(id={getattr(self, 'id', None)!r})>"


class Base(_ModelMixin, DeclarativeBase):
    """
    Base class for the central registry models.
    Tables live in the central database and are managed by Alembic.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class TenantBase(_ModelMixin, DeclarativeBase):
    """
    Base class for models stored in every tenant database.
    Tables are created by the tenant migration set, never by metadata.create_all().
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
