# tenantdb/api/metrics.py
"""
Prometheus exposition of the tenancy counters.

METRICS_USERNAME / METRICS_PASSWORD, when set, put the endpoint behind HTTP Basic auth.
Under PROMETHEUS_MULTIPROC_DIR the samples of every worker process are aggregated.
"""
from __future__ import annotations

import os
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest
from prometheus_client.multiprocess import MultiProcessCollector

router = APIRouter(tags=["metrics"])

_basic = HTTPBasic(auto_error=False)


def _same(given: Optional[str], expected: str) -> bool:
    return secrets.compare_digest((given or "").encode(), expected.encode())


def scrape_auth(creds: Optional[HTTPBasicCredentials] = Depends(_basic)) -> None:
    expected_user = os.getenv("METRICS_USERNAME") or ""
    expected_pwd = os.getenv("METRICS_PASSWORD") or ""
    if not expected_user and not expected_pwd:
        return
    if creds is None or not (
        _same(creds.username, expected_user) & _same(creds.password, expected_pwd)
    ):
        raise HTTPException(
            status_code=401,
            detail="Metrics require authentication",
            headers={"WWW-Authenticate": 'Basic realm="tenantdb-metrics"'},
        )


def collector_registry() -> CollectorRegistry:
    if not os.getenv("PROMETHEUS_MULTIPROC_DIR"):
        return REGISTRY
    aggregated = CollectorRegistry()
    MultiProcessCollector(aggregated)
    return aggregated


@router.get("/metrics", dependencies=[Depends(scrape_auth)])
def metrics() -> Response:
    return Response(
        generate_latest(collector_registry()),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-store"},
    )
