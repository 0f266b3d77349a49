# tenantdb/__init__.py
"""
Per-tenant database provisioning and request routing.

Keep this module free of heavy imports: alembic's env.py, the CLI and tests all import
the package before settings exist.
"""

from __future__ import annotations

import os

# Deployments may stamp the running build
__version__ = os.getenv("APP_VERSION") or os.getenv("GIT_COMMIT") or "0.1.0"

__all__ = ["__version__"]
