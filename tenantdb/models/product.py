# tenantdb/models/product.py
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import TenantBase


class Product(TenantBase):
    """Tenant-scoped product. Schema owned by tenant migrations 0001 and 0002."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    __table_args__ = (Index("ix_products_name", "name"),)

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name={self.name!r})>"
