"""
Reporting endpoints.
GET /api/reports/kpis              - live KPI metrics (cached)
GET /api/reports/trends            - daily revenue / leads / conversions
GET /api/reports/leaderboard       - top reps by won value
GET /api/reports/pipeline-summary  - stage counts and totals
GET /api/reports/crew-hours        - hours per crew member per day
GET /api/reports/crew-hours.csv    - the same as CSV
"""

import asyncio
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import Response

from roofops.auth import current_context
from roofops.core.utils import utcnow
from roofops.database import get_db
from roofops.reports.crew_hours import crew_hours, crew_hours_csv
from roofops.reports.kpis import leaderboard, live_metrics, pipeline_summary, trends

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _default_range(start: Optional[date], end: Optional[date]):
    """Defaults to the current week (Monday through today)."""
    today = utcnow().date()
    end = end or today
    start = start or (end - timedelta(days=end.weekday()))
    return start, end


@router.get("/kpis")
async def kpis_endpoint(request: Request, refresh: bool = Query(False)):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return live_metrics(db, ctx, use_cache=not refresh)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/trends")
async def trends_endpoint(request: Request, period: str = Query("30d")):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return trends(db, ctx, period)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/leaderboard")
async def leaderboard_endpoint(
    request: Request,
    period: str = Query("mtd"),
    limit: int = Query(10, ge=1, le=100),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return leaderboard(db, ctx, period, limit)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/pipeline-summary")
async def pipeline_summary_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return pipeline_summary(db, ctx)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/crew-hours")
async def crew_hours_endpoint(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    crew_member_id: Optional[str] = Query(None),
):
    ctx = current_context(request)
    start, end = _default_range(start, end)

    def _sync():
        db = get_db()
        try:
            return crew_hours(db, ctx, start, end, crew_member_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/crew-hours.csv")
async def crew_hours_csv_endpoint(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    crew_member_id: Optional[str] = Query(None),
):
    ctx = current_context(request)
    start, end = _default_range(start, end)

    def _sync():
        db = get_db()
        try:
            return crew_hours_csv(db, ctx, start, end, crew_member_id)
        finally:
            db.close()

    text = await asyncio.to_thread(_sync)
    filename = f"crew-hours-{start.isoformat()}-{end.isoformat()}.csv"
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
