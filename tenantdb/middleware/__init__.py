from .tenant import TenantMiddleware

__all__ = ["TenantMiddleware"]
