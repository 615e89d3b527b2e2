"""
Crew hours per member per day, with CSV export.

Only closed time entries count; a shift is dated by its clock-in day.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional

import pandas as pd
from sqlalchemy.orm import Session

from roofops.core.exceptions import PermissionDeniedError, ValidationFailedError
from roofops.core.utils import hours_between, round_hours
from roofops.database import CrewTimeEntry, profile_names
from roofops.domain.models import UserContext

CSV_COLUMNS = ["crew_member", "date", "hours", "shifts"]


def _scope(ctx: UserContext, crew_member_id: Optional[str]) -> Optional[str]:
    """Managers may read anyone; everyone else only themselves."""
    if ctx.is_manager:
        return crew_member_id
    if crew_member_id and crew_member_id != ctx.user_id:
        raise PermissionDeniedError("You can only view your own hours")
    return ctx.user_id


def hours_frame(
    db: Session,
    ctx: UserContext,
    start: date,
    end: date,
    crew_member_id: Optional[str] = None,
) -> pd.DataFrame:
    if end < start:
        raise ValidationFailedError("end must not be before start")
    member = _scope(ctx, crew_member_id)
    q = db.query(CrewTimeEntry).filter(
        CrewTimeEntry.tenant_id == ctx.tenant_id,
        CrewTimeEntry.clock_out.isnot(None),
        CrewTimeEntry.clock_in >= datetime.combine(start, time.min),
        CrewTimeEntry.clock_in < datetime.combine(end + timedelta(days=1), time.min),
    )
    if member:
        q = q.filter(CrewTimeEntry.crew_member_id == member)
    rows = [
        {
            "crew_member_id": e.crew_member_id,
            "date": e.clock_in.date().isoformat(),
            "hours": hours_between(e.clock_in, e.clock_out),
        }
        for e in q.all()
    ]
    return pd.DataFrame(rows, columns=["crew_member_id", "date", "hours"])


def crew_hours(
    db: Session,
    ctx: UserContext,
    start: date,
    end: date,
    crew_member_id: Optional[str] = None,
) -> Dict[str, Any]:
    df = hours_frame(db, ctx, start, end, crew_member_id)
    result: Dict[str, Any] = {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "rows": [],
        "totals": [],
        "total_hours": 0.0,
    }
    if df.empty:
        return result

    names = profile_names(db, ctx.tenant_id, df["crew_member_id"].unique().tolist())
    daily = (
        df.groupby(["crew_member_id", "date"])
        .agg(hours=("hours", "sum"), shifts=("hours", "count"))
        .reset_index()
        .sort_values(["date", "crew_member_id"])
    )
    totals = (
        daily.groupby("crew_member_id")
        .agg(hours=("hours", "sum"), days=("date", "nunique"))
        .reset_index()
        .sort_values("hours", ascending=False)
    )

    result["rows"] = [
        {
            "crew_member_id": r.crew_member_id,
            "name": names.get(r.crew_member_id, ""),
            "date": r.date,
            "hours": round_hours(r.hours),
            "shifts": int(r.shifts),
        }
        for r in daily.itertuples(index=False)
    ]
    result["totals"] = [
        {
            "crew_member_id": r.crew_member_id,
            "name": names.get(r.crew_member_id, ""),
            "hours": round_hours(r.hours),
            "days": int(r.days),
        }
        for r in totals.itertuples(index=False)
    ]
    result["total_hours"] = round_hours(float(df["hours"].sum()))
    return result


def crew_hours_csv(
    db: Session,
    ctx: UserContext,
    start: date,
    end: date,
    crew_member_id: Optional[str] = None,
) -> str:
    report = crew_hours(db, ctx, start, end, crew_member_id)
    df = pd.DataFrame(
        [
            {"crew_member": r["name"] or r["crew_member_id"], "date": r["date"],
             "hours": r["hours"], "shifts": r["shifts"]}
            for r in report["rows"]
        ],
        columns=CSV_COLUMNS,
    )
    return df.to_csv(index=False)
