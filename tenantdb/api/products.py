# tenantdb/api/products.py
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from tenantdb.models.product import Product
from tenantdb.schemas.product import ProductCreate, ProductOut

from .deps import get_tenant_session

router = APIRouter(prefix="/products", tags=["Products"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ProductOut, status_code=201)
def create_product(
    payload: ProductCreate, session: Session = Depends(get_tenant_session)
) -> Product:
    product = Product(
        name=payload.name.strip(),
        description=payload.description,
        price=payload.price,
    )
    session.add(product)
    session.commit()
    session.refresh(product)
    logger.info("Product created", extra={"product_id": product.id})
    return product


@router.get("", response_model=List[ProductOut])
def list_products(
    limit: int = Query(50, ge=1, le=1000, description="Max rows to return"),
    offset: int = Query(0, ge=0, description="Rows to skip for paging"),
    session: Session = Depends(get_tenant_session),
) -> List[Product]:
    stmt = select(Product).order_by(Product.id).limit(limit).offset(offset)
    return list(session.scalars(stmt))


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, session: Session = Depends(get_tenant_session)) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
