"""index products.name"""
from __future__ import annotations

version = "0002"
description = "index products.name"


def upgrade(op) -> None:
    op.create_index("ix_products_name", "products", ["name"], unique=False)
