"""API routes for monitored sites and the scheduler.

Endpoints:
  GET  /api/sites                    — all sites with their latest check
  GET  /api/sites/{id}               — site detail + latest check + 24h stats
  GET  /api/sites/{id}/checks        — paginated check history
  POST /api/sites/{id}/check         — run a check now
  GET  /api/scheduler                — scheduler status
"""

from __future__ import annotations

import logging
import math
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query, Request

from isitup.health.models import Site
from isitup.health.store import SQLiteStore, window_start

logger = logging.getLogger(__name__)

health_router = APIRouter()

Timeframe = Literal["24h", "7d", "30d"]


def _get_site(store: SQLiteStore, site_id: str) -> Site:
    site = store.get_site(site_id)
    if not site:
        raise HTTPException(status_code=404, detail=f"Site not found: {site_id}")
    return site


# ── Site endpoints ───────────────────────────────────────────────────────────


@health_router.get("/sites")
def list_sites(request: Request) -> dict[str, Any]:
    """List all sites with the latest check of each."""
    store: SQLiteStore = request.app.state.store

    sites = []
    for site in store.list_sites():
        d = site.to_dict()
        latest = store.get_latest_check(site.id)
        d["latest"] = latest.to_dict() if latest else None
        d["status"] = latest.status.value if latest else "unknown"
        sites.append(d)

    return {"sites": sites}


@health_router.get("/sites/{site_id}")
def get_site(site_id: str, request: Request) -> dict[str, Any]:
    """Site detail with latest check, uptime and average latency."""
    store: SQLiteStore = request.app.state.store
    site = _get_site(store, site_id)

    latest = store.get_latest_check(site_id)
    d = site.to_dict()
    d["latest"] = latest.to_dict() if latest else None
    d["uptime_24h"] = store.uptime_percentage(site_id, "24h")
    d["uptime_7d"] = store.uptime_percentage(site_id, "7d")
    d["avg_response_ms_24h"] = store.average_response_time(site_id, "24h")
    return d


@health_router.get("/sites/{site_id}/checks")
def check_history(
    site_id: str,
    request: Request,
    timeframe: Timeframe = "24h",
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500),
) -> dict[str, Any]:
    """Paginated check history, newest first."""
    store: SQLiteStore = request.app.state.store
    _get_site(store, site_id)

    start = window_start(timeframe)
    total = store.count_checks(site_id, since=start)
    checks = store.get_history(
        site_id, since=start, limit=page_size, offset=(page - 1) * page_size,
    )
    return {
        "site_id": site_id,
        "timeframe": timeframe,
        "checks": [c.to_dict() for c in checks],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size),
    }


@health_router.post("/sites/{site_id}/check")
async def trigger_check(site_id: str, request: Request) -> dict[str, Any]:
    """Probe a site immediately, store the result and notify on transition."""
    store: SQLiteStore = request.app.state.store
    scheduler = request.app.state.scheduler
    site = _get_site(store, site_id)

    outcome = await scheduler.check_site_now(site)
    return {
        "site_id": site_id,
        "previous_status": outcome.previous_status.value if outcome.previous_status else None,
        "notified": outcome.notified,
        "check": outcome.check.to_dict() if outcome.check else None,
    }


# ── Scheduler ────────────────────────────────────────────────────────────────


@health_router.get("/scheduler")
def scheduler_status(request: Request) -> dict[str, Any]:
    return request.app.state.scheduler.status()
