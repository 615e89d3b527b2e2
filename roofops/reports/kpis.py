"""
Dashboard KPIs: live metrics, daily trends, sales leaderboard.

Revenue is the contract amount (falling back to selling price) of completed
projects, dated by ``actual_completion_date``.  Live metrics are cached per
tenant for ``KPI_CACHE_TTL_SECONDS``.
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from roofops import config
from roofops.cache_backend import get_cache_backend, tenant_key
from roofops.core.constants import LEADERBOARD_PERIODS, LOST_STATUSES, TREND_PERIOD_DAYS, WON_STATUSES
from roofops.core.exceptions import PermissionDeniedError, ValidationFailedError
from roofops.core.utils import pct_change, safe_div, utcnow
from roofops.database import (
    ApprovalRequest, CrewAssignment, CrewTimeEntry, PipelineEntry, Project, profile_names,
)
from roofops.domain.models import UserContext
from roofops.metrics import record_kpi_cache_access
from roofops.pipeline.board import BoardFilters, build_board

logger = logging.getLogger(__name__)


def _require_manager(ctx: UserContext) -> None:
    if not ctx.is_manager:
        raise PermissionDeniedError("Reports are available to managers only")


def _month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _revenue(db: Session, tenant_id: str, start: datetime, end: datetime) -> float:
    total = (
        db.query(func.sum(func.coalesce(Project.contract_amount, Project.selling_price, 0.0)))
        .filter(
            Project.tenant_id == tenant_id,
            Project.status == "completed",
            Project.actual_completion_date >= start,
            Project.actual_completion_date < end,
        )
        .scalar()
    )
    return float(total or 0.0)


def _leads(db: Session, tenant_id: str, start: datetime, end: datetime) -> int:
    return (
        db.query(func.count(PipelineEntry.id))
        .filter(
            PipelineEntry.tenant_id == tenant_id,
            PipelineEntry.created_at >= start,
            PipelineEntry.created_at < end,
        )
        .scalar()
    ) or 0


def conversion_counts(db: Session, tenant_id: str, start: datetime, end: datetime) -> Dict[str, int]:
    """Won/lost among entries created in ``[start, end)``.

    Won means the entry reached a project (it has a project row, or its
    status is project/completed/closed); lost means lost or canceled.
    """
    entries = (
        db.query(PipelineEntry.id, PipelineEntry.status)
        .filter(
            PipelineEntry.tenant_id == tenant_id,
            PipelineEntry.created_at >= start,
            PipelineEntry.created_at < end,
        )
        .all()
    )
    ids = [e.id for e in entries]
    converted = set()
    if ids:
        converted = {
            pid for (pid,) in
            db.query(Project.pipeline_entry_id).filter(Project.pipeline_entry_id.in_(ids))
        }
    won = sum(1 for e in entries if e.id in converted or e.status in WON_STATUSES)
    lost = sum(1 for e in entries if e.id not in converted and e.status in LOST_STATUSES)
    return {"won": won, "lost": lost}


def compute_live_metrics(db: Session, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    month_start = _month_start(now)
    last_month_start = _month_start(month_start - timedelta(days=1))
    year_start = month_start.replace(month=1)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    day_of_month = now.day

    revenue_mtd = _revenue(db, tenant_id, month_start, now + timedelta(seconds=1))
    revenue_last = _revenue(db, tenant_id, last_month_start, month_start)
    revenue_ytd = _revenue(db, tenant_id, year_start, now + timedelta(seconds=1))

    leads_mtd = _leads(db, tenant_id, month_start, now + timedelta(seconds=1))
    leads_last = _leads(db, tenant_id, last_month_start, month_start)

    conv = conversion_counts(db, tenant_id, month_start, now + timedelta(seconds=1))
    decided = conv["won"] + conv["lost"]

    active_assignments = (
        db.query(func.count(CrewAssignment.id))
        .filter(CrewAssignment.tenant_id == tenant_id, CrewAssignment.status != "completed")
        .scalar()
    ) or 0
    pending_approvals = (
        db.query(func.count(ApprovalRequest.id))
        .filter(ApprovalRequest.tenant_id == tenant_id, ApprovalRequest.status == "pending")
        .scalar()
    ) or 0
    clocked_in = (
        db.query(func.count(func.distinct(CrewTimeEntry.crew_member_id)))
        .filter(CrewTimeEntry.tenant_id == tenant_id, CrewTimeEntry.clock_out.is_(None))
        .scalar()
    ) or 0

    return {
        "revenue": {
            "mtd": round(revenue_mtd, 2),
            "ytd": round(revenue_ytd, 2),
            "last_month": round(revenue_last, 2),
            "projected_month": round(safe_div(revenue_mtd, day_of_month) * days_in_month, 2),
            "trend_pct": round(pct_change(revenue_last, revenue_mtd), 1),
        },
        "leads": {
            "mtd": leads_mtd,
            "last_month": leads_last,
            "velocity_per_day": round(safe_div(leads_mtd, day_of_month), 2),
            "trend_pct": round(pct_change(leads_last, leads_mtd), 1),
        },
        "conversion": {
            "won": conv["won"],
            "lost": conv["lost"],
            "rate_pct": round(safe_div(conv["won"], decided) * 100, 1),
        },
        "activity": {
            "active_assignments": active_assignments,
            "pending_approvals": pending_approvals,
            "crew_clocked_in": clocked_in,
        },
        "generated_at": now.isoformat(),
    }


def live_metrics(
    db: Session,
    ctx: UserContext,
    now: Optional[datetime] = None,
    use_cache: bool = True,
) -> Dict[str, Any]:
    _require_manager(ctx)
    cache = get_cache_backend()
    key = tenant_key(ctx.tenant_id, "kpis", "live")
    if use_cache and now is None:
        cached = cache.get_json(key)
        record_kpi_cache_access(cached is not None)
        if cached is not None:
            return cached
    payload = compute_live_metrics(db, ctx.tenant_id, now)
    if now is None:
        cache.set_json(key, payload, ttl_seconds=config.KPI_CACHE_TTL_SECONDS)
    return payload


def invalidate_live_metrics(tenant_id: str) -> None:
    try:
        get_cache_backend().delete(tenant_key(tenant_id, "kpis", "live"))
    except Exception as exc:
        logger.debug("kpi cache invalidation failed for %s: %s", tenant_id, exc)


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

def _daily(rows: List[tuple], index: pd.DatetimeIndex) -> pd.Series:
    """Sum ``(timestamp, value)`` rows per day over ``index`` (missing days = 0)."""
    if not rows:
        return pd.Series(0.0, index=index)
    df = pd.DataFrame(rows, columns=["ts", "value"])
    df["ts"] = pd.to_datetime(df["ts"])
    df["value"] = pd.to_numeric(df["value"], errors="coerce").fillna(0.0)
    daily = df.set_index("ts")["value"].resample("D").sum()
    return daily.reindex(index, fill_value=0.0)


def trends(
    db: Session,
    ctx: UserContext,
    period: str = "30d",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    _require_manager(ctx)
    if period not in TREND_PERIOD_DAYS:
        raise ValidationFailedError(f"period must be one of {sorted(TREND_PERIOD_DAYS)}")
    now = now or utcnow()
    end_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_day = end_day - timedelta(days=TREND_PERIOD_DAYS[period] - 1)
    index = pd.date_range(start_day, end_day, freq="D")
    window_end = end_day + timedelta(days=1)

    revenue_rows = (
        db.query(
            Project.actual_completion_date,
            func.coalesce(Project.contract_amount, Project.selling_price, 0.0),
        )
        .filter(
            Project.tenant_id == ctx.tenant_id,
            Project.status == "completed",
            Project.actual_completion_date >= start_day,
            Project.actual_completion_date < window_end,
        )
        .all()
    )
    lead_rows = [
        (ts, 1) for (ts,) in
        db.query(PipelineEntry.created_at).filter(
            PipelineEntry.tenant_id == ctx.tenant_id,
            PipelineEntry.created_at >= start_day,
            PipelineEntry.created_at < window_end,
        )
    ]
    conversion_rows = [
        (ts, 1) for (ts,) in
        db.query(Project.created_at).filter(
            Project.tenant_id == ctx.tenant_id,
            Project.created_at >= start_day,
            Project.created_at < window_end,
        )
    ]

    frame = pd.DataFrame({
        "revenue": _daily([tuple(r) for r in revenue_rows], index),
        "leads": _daily(lead_rows, index),
        "conversions": _daily(conversion_rows, index),
    })

    days = [
        {
            "date": ts.date().isoformat(),
            "revenue": round(float(row.revenue), 2),
            "leads": int(row.leads),
            "conversions": int(row.conversions),
        }
        for ts, row in frame.iterrows()
    ]
    return {
        "period": period,
        "days": days,
        "totals": {
            "revenue": round(float(frame["revenue"].sum()), 2),
            "leads": int(frame["leads"].sum()),
            "conversions": int(frame["conversions"].sum()),
        },
    }


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

def period_start(period: str, now: datetime) -> datetime:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "wtd":
        return today - timedelta(days=today.weekday())
    if period == "mtd":
        return today.replace(day=1)
    if period == "ytd":
        return today.replace(month=1, day=1)
    raise ValidationFailedError(f"period must be one of {sorted(LEADERBOARD_PERIODS)}")


def leaderboard(
    db: Session,
    ctx: UserContext,
    period: str = "mtd",
    limit: int = 10,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Won deals (converted to a project in the period) per assigned rep."""
    _require_manager(ctx)
    now = now or utcnow()
    start = period_start(period, now)

    rows = (
        db.query(
            PipelineEntry.assigned_to,
            PipelineEntry.created_by,
            func.coalesce(Project.selling_price, PipelineEntry.estimated_value, 0.0),
        )
        .join(Project, Project.pipeline_entry_id == PipelineEntry.id)
        .filter(
            Project.tenant_id == ctx.tenant_id,
            Project.created_at >= start,
            Project.created_at <= now,
        )
        .all()
    )
    if not rows:
        return {"period": period, "leaders": []}

    df = pd.DataFrame(
        [(assigned or created, value) for assigned, created, value in rows],
        columns=["rep_id", "value"],
    ).dropna(subset=["rep_id"])
    if df.empty:
        return {"period": period, "leaders": []}
    stats = df.groupby("rep_id").agg(total_value=("value", "sum"), deals=("value", "count"))
    stats = stats.sort_values(["total_value", "deals"], ascending=False).head(max(1, limit))

    names = profile_names(db, ctx.tenant_id, list(stats.index))
    leaders = [
        {
            "rank": rank,
            "rep_id": rep_id,
            "name": names.get(rep_id, ""),
            "total_value": round(float(row.total_value), 2),
            "deals": int(row.deals),
        }
        for rank, (rep_id, row) in enumerate(stats.iterrows(), start=1)
    ]
    return {"period": period, "leaders": leaders}


def pipeline_summary(db: Session, ctx: UserContext, filters: Optional[BoardFilters] = None) -> Dict[str, Any]:
    """Board totals without the entry cards (respects role visibility)."""
    board = build_board(db, ctx, filters)
    return {
        "stages": [
            {k: s[k] for k in ("key", "name", "count", "total_value")}
            for s in board["stages"]
        ],
        "total_count": board["total_count"],
        "total_value": board["total_value"],
    }
