from .product import ProductCreate, ProductOut

__all__ = ["ProductCreate", "ProductOut"]
