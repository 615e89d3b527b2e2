"""
Tests for roofops.reports: live KPIs, trends, leaderboard, crew hours.

Every row gets an explicit timestamp relative to a fixed ``NOW`` so the
windows do not depend on the wall clock.
"""

from datetime import date, datetime

import pytest

from roofops.core.exceptions import PermissionDeniedError, ValidationFailedError
from roofops.database import CrewTimeEntry
from roofops.metrics import metrics_snapshot
from roofops.pipeline.board import BoardFilters
from roofops.reports.crew_hours import crew_hours, crew_hours_csv
from roofops.reports.kpis import (
    compute_live_metrics,
    invalidate_live_metrics,
    leaderboard,
    live_metrics,
    period_start,
    pipeline_summary,
    trends,
)

NOW = datetime(2026, 3, 18, 12, 0)   # a Wednesday


def _shift(db, member, start, end=None):
    entry = CrewTimeEntry(
        tenant_id=member.tenant_id,
        crew_member_id=member.id,
        clock_in=start,
        clock_out=end,
    )
    db.add(entry)
    db.commit()
    return entry


# ---------------------------------------------------------------------------
# Live metrics
# ---------------------------------------------------------------------------

class TestLiveMetrics:
    @pytest.fixture
    def seeded(self, db, org, make):
        ctx = org.manager_ctx
        make.project(ctx, status="completed", selling_price=15_000, contract_amount=20_000,
                     completed_at=datetime(2026, 3, 10, 15, 0))
        make.project(ctx, status="completed", selling_price=10_000,
                     completed_at=datetime(2026, 2, 20, 9, 0))
        # after NOW, and an unfinished job
        make.project(ctx, status="completed", selling_price=99_000,
                     completed_at=datetime(2026, 3, 20, 9, 0))
        make.project(ctx, status="active", selling_price=50_000)

        make.entry(ctx, status="project", created_at=datetime(2026, 3, 2, 9, 0))
        make.entry(ctx, status="lost", created_at=datetime(2026, 3, 5, 9, 0))
        converted = make.entry(ctx, created_at=datetime(2026, 3, 10, 9, 0))
        make.project(ctx, entry=converted, created_at=datetime(2026, 3, 11, 9, 0))
        make.entry(ctx, created_at=datetime(2026, 2, 10, 9, 0))

        _shift(db, org.crew, datetime(2026, 3, 18, 7, 0))
        return ctx

    def test_revenue(self, db, seeded):
        revenue = compute_live_metrics(db, seeded.tenant_id, NOW)["revenue"]
        assert revenue["mtd"] == 20_000
        assert revenue["last_month"] == 10_000
        assert revenue["ytd"] == 30_000
        assert revenue["projected_month"] == pytest.approx(34_444.44)
        assert revenue["trend_pct"] == 100.0

    def test_leads_and_conversion(self, db, seeded):
        data = compute_live_metrics(db, seeded.tenant_id, NOW)
        assert data["leads"]["mtd"] == 3
        assert data["leads"]["last_month"] == 1
        assert data["leads"]["velocity_per_day"] == pytest.approx(0.17)
        assert data["leads"]["trend_pct"] == 200.0
        assert data["conversion"] == {"won": 2, "lost": 1, "rate_pct": 66.7}

    def test_activity(self, db, seeded):
        activity = compute_live_metrics(db, seeded.tenant_id, NOW)["activity"]
        assert activity == {"active_assignments": 0, "pending_approvals": 0, "crew_clocked_in": 1}

    def test_empty_tenant_is_all_zero(self, db, org):
        data = compute_live_metrics(db, org.tenant.id, NOW)
        assert data["revenue"]["mtd"] == 0
        assert data["revenue"]["trend_pct"] == 0.0
        assert data["conversion"]["rate_pct"] == 0.0

    def test_other_tenant_not_counted(self, db, seeded, make):
        other = make.tenant(name="Other Co")
        assert compute_live_metrics(db, other.id, NOW)["revenue"]["ytd"] == 0

    def test_manager_only(self, db, org):
        with pytest.raises(PermissionDeniedError):
            live_metrics(db, org.rep_ctx, now=NOW)

    def test_cached_until_invalidated(self, db, org, make):
        ctx = org.manager_ctx
        first = live_metrics(db, ctx)
        make.entry(ctx)
        second = live_metrics(db, ctx)
        assert second == first
        assert metrics_snapshot()["kpi_cache_hit_rate"] == 0.5

        invalidate_live_metrics(ctx.tenant_id)
        third = live_metrics(db, ctx)
        assert third["leads"]["mtd"] == first["leads"]["mtd"] + 1

    def test_explicit_now_bypasses_cache(self, db, org):
        live_metrics(db, org.manager_ctx, now=NOW)
        assert metrics_snapshot()["kpi_cache_hit_rate"] == 0.0


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

class TestTrends:
    def test_daily_series(self, db, org, make):
        ctx = org.manager_ctx
        make.project(ctx, status="completed", contract_amount=5_000,
                     created_at=datetime(2026, 3, 15, 8, 0),
                     completed_at=datetime(2026, 3, 15, 16, 0))
        make.project(ctx, status="completed", contract_amount=7_000,
                     created_at=datetime(2026, 1, 5, 8, 0),
                     completed_at=datetime(2026, 3, 1, 16, 0))
        make.entry(ctx, created_at=datetime(2026, 3, 12, 9, 0))
        make.entry(ctx, created_at=datetime(2026, 3, 18, 8, 0))

        data = trends(db, ctx, "7d", now=NOW)
        assert data["period"] == "7d"
        assert [d["date"] for d in data["days"]][0] == "2026-03-12"
        assert [d["date"] for d in data["days"]][-1] == "2026-03-18"
        assert len(data["days"]) == 7
        by_day = {d["date"]: d for d in data["days"]}
        assert by_day["2026-03-15"]["revenue"] == 5_000
        assert by_day["2026-03-15"]["conversions"] == 1
        assert by_day["2026-03-12"]["leads"] == 1
        assert by_day["2026-03-14"] == {"date": "2026-03-14", "revenue": 0.0, "leads": 0, "conversions": 0}
        assert data["totals"] == {"revenue": 5_000, "leads": 2, "conversions": 1}

    def test_period_lengths(self, db, org):
        assert len(trends(db, org.manager_ctx, "30d", now=NOW)["days"]) == 30
        assert len(trends(db, org.manager_ctx, "90d", now=NOW)["days"]) == 90

    def test_unknown_period(self, db, org):
        with pytest.raises(ValidationFailedError):
            trends(db, org.manager_ctx, "1y", now=NOW)

    def test_manager_only(self, db, org):
        with pytest.raises(PermissionDeniedError):
            trends(db, org.crew_ctx, now=NOW)


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

class TestLeaderboard:
    def test_period_start(self):
        assert period_start("today", NOW) == datetime(2026, 3, 18)
        assert period_start("wtd", NOW) == datetime(2026, 3, 16)
        assert period_start("mtd", NOW) == datetime(2026, 3, 1)
        assert period_start("ytd", NOW) == datetime(2026, 1, 1)
        with pytest.raises(ValidationFailedError):
            period_start("quarter", NOW)

    @pytest.fixture
    def deals(self, org, make):
        mgr = org.manager_ctx
        a = make.entry(org.rep_ctx, estimated_value=8_000)
        b = make.entry(org.rep_ctx, estimated_value=3_000)
        c = make.entry(org.rep2_ctx, estimated_value=1_000)
        old = make.entry(org.rep_ctx, estimated_value=90_000)
        make.project(mgr, entry=a, selling_price=12_000, created_at=datetime(2026, 3, 5, 10, 0))
        make.project(mgr, entry=b, selling_price=None, created_at=datetime(2026, 3, 6, 10, 0))
        make.project(mgr, entry=c, selling_price=20_000, created_at=datetime(2026, 3, 7, 10, 0))
        make.project(mgr, entry=old, selling_price=90_000, created_at=datetime(2026, 2, 20, 10, 0))
        return org

    def test_ranked_by_value(self, db, deals):
        leaders = leaderboard(db, deals.manager_ctx, "mtd", now=NOW)["leaders"]
        assert [(row["rank"], row["name"], row["total_value"], row["deals"]) for row in leaders] == [
            (1, "Sam Seller", 20_000, 1),
            (2, "Rita Rep", 15_000, 2),
        ]
        assert leaders[1]["rep_id"] == deals.rep.id

    def test_limit(self, db, deals):
        leaders = leaderboard(db, deals.manager_ctx, "mtd", limit=1, now=NOW)["leaders"]
        assert len(leaders) == 1

    def test_empty_window(self, db, deals):
        assert leaderboard(db, deals.manager_ctx, "wtd", now=NOW) == {"period": "wtd", "leaders": []}

    def test_manager_only(self, db, org):
        with pytest.raises(PermissionDeniedError):
            leaderboard(db, org.rep_ctx, now=NOW)


# ---------------------------------------------------------------------------
# Pipeline summary
# ---------------------------------------------------------------------------

class TestPipelineSummary:
    def test_totals_follow_visibility(self, db, org, make):
        make.entry(org.rep_ctx, estimated_value=5_000)
        make.entry(org.rep_ctx, status="legal", estimated_value=2_500)
        make.entry(org.rep2_ctx, estimated_value=1_000)

        summary = pipeline_summary(db, org.manager_ctx)
        assert summary["total_count"] == 3
        assert summary["total_value"] == 8_500
        assert len(summary["stages"]) == 7
        assert "entries" not in summary["stages"][0]

        mine = pipeline_summary(db, org.rep_ctx)
        assert mine["total_count"] == 2
        lead = next(s for s in mine["stages"] if s["key"] == "lead")
        assert lead == {"key": "lead", "name": "Lead", "count": 1, "total_value": 5_000}

    def test_filters(self, db, org, make):
        make.entry(org.rep_ctx, estimated_value=5_000)
        make.entry(org.rep2_ctx, estimated_value=1_000)
        summary = pipeline_summary(db, org.manager_ctx, BoardFilters(sales_rep_id=org.rep2.id))
        assert summary["total_count"] == 1
        assert summary["total_value"] == 1_000


# ---------------------------------------------------------------------------
# Crew hours
# ---------------------------------------------------------------------------

class TestCrewHours:
    @pytest.fixture
    def shifts(self, db, org, make):
        dana = make.user(org.tenant, "crew", first="Dana", last="Roofer")
        _shift(db, org.crew, datetime(2026, 3, 16, 8, 0), datetime(2026, 3, 16, 16, 0))
        _shift(db, org.crew, datetime(2026, 3, 16, 17, 0), datetime(2026, 3, 16, 18, 30))
        _shift(db, org.crew, datetime(2026, 3, 17, 7, 0), datetime(2026, 3, 17, 12, 30))
        _shift(db, dana, datetime(2026, 3, 17, 6, 0), datetime(2026, 3, 17, 16, 0))
        # still open, and outside the range
        _shift(db, dana, datetime(2026, 3, 18, 6, 0))
        _shift(db, org.crew, datetime(2026, 3, 20, 6, 0), datetime(2026, 3, 20, 10, 0))
        return dana

    def test_rows_and_totals(self, db, org, shifts):
        report = crew_hours(db, org.manager_ctx, date(2026, 3, 16), date(2026, 3, 18))
        assert report["start"] == "2026-03-16"
        assert report["end"] == "2026-03-18"
        assert report["total_hours"] == 25.0

        rows = {(r["name"], r["date"]): (r["hours"], r["shifts"]) for r in report["rows"]}
        assert rows == {
            ("Carl Crew", "2026-03-16"): (9.5, 2),
            ("Carl Crew", "2026-03-17"): (5.5, 1),
            ("Dana Roofer", "2026-03-17"): (10.0, 1),
        }
        assert report["rows"][0]["date"] == "2026-03-16"

        totals = [(t["name"], t["hours"], t["days"]) for t in report["totals"]]
        assert totals == [("Carl Crew", 15.0, 2), ("Dana Roofer", 10.0, 1)]

    def test_filter_by_member(self, db, org, shifts):
        report = crew_hours(db, org.manager_ctx, date(2026, 3, 16), date(2026, 3, 18), shifts.id)
        assert report["total_hours"] == 10.0
        assert {r["crew_member_id"] for r in report["rows"]} == {shifts.id}

    def test_crew_sees_only_own(self, db, org, shifts):
        report = crew_hours(db, org.crew_ctx, date(2026, 3, 16), date(2026, 3, 18))
        assert report["total_hours"] == 15.0
        with pytest.raises(PermissionDeniedError):
            crew_hours(db, org.crew_ctx, date(2026, 3, 16), date(2026, 3, 18), shifts.id)

    def test_empty_range(self, db, org):
        report = crew_hours(db, org.manager_ctx, date(2026, 3, 16), date(2026, 3, 18))
        assert report["rows"] == []
        assert report["total_hours"] == 0.0

    def test_end_before_start(self, db, org):
        with pytest.raises(ValidationFailedError):
            crew_hours(db, org.manager_ctx, date(2026, 3, 18), date(2026, 3, 16))

    def test_csv(self, db, org, shifts):
        text = crew_hours_csv(db, org.manager_ctx, date(2026, 3, 16), date(2026, 3, 18))
        lines = text.strip().splitlines()
        assert lines[0] == "crew_member,date,hours,shifts"
        assert "Carl Crew,2026-03-16,9.5,2" in lines
        assert len(lines) == 4

    def test_csv_header_only_when_empty(self, db, org):
        text = crew_hours_csv(db, org.manager_ctx, date(2026, 3, 16), date(2026, 3, 18))
        assert text.strip() == "crew_member,date,hours,shifts"
