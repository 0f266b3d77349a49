from fastapi import APIRouter

from .health import router as health_router
from .metrics import router as metrics_router
from .products import router as products_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(metrics_router)
api_router.include_router(products_router)

__all__ = ["api_router"]
