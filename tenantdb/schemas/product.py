# tenantdb/schemas/product.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductCreate(BaseModel):
    """Payload for creating a product in the caller's tenant database."""

    name: str = Field(..., min_length=1, max_length=255, examples=["Widget"])
    description: str = Field(default="", examples=["A very useful widget"])
    price: Decimal = Field(..., ge=0, max_digits=8, decimal_places=2, examples=["9.99"])


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price: Decimal
    created_at: Optional[datetime] = None
