"""Tests for the crew time clock, work orders and GPS sync."""

from datetime import datetime, timedelta, timezone

import pytest

from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.core.utils import utcnow
from roofops.crew import assignments, gps, timeclock
from roofops.database import CrewLocationPing, CrewTimeEntry, Photo, PhotoBucket

SITE = (32.7767, -96.7970)


def _photo(db, assignment, bucket):
    db.add(Photo(tenant_id=assignment.tenant_id, assignment_id=assignment.id,
                 bucket_key=bucket, file_path=f"crew/{bucket}.jpg"))
    db.commit()


@pytest.fixture
def job(db, org):
    return assignments.create_assignment(db, org.manager_ctx, {
        "title": "Tear-off and reshingle",
        "assigned_to": org.crew.id,
        "scheduled_date": utcnow().date().isoformat(),
        "site_lat": SITE[0],
        "site_lng": SITE[1],
        "checklist": [
            {"label": "Tarp landscaping"},
            {"label": "Final walkthrough", "requires_photo": True, "photo_bucket": "after"},
        ],
    })


class TestTimeclock:
    def test_clock_in_and_out(self, db, org):
        entry = timeclock.clock_in(db, org.crew_ctx, location={"lat": 32.7, "lng": -96.8, "accuracy": 12})
        assert entry.location_in == {"lat": 32.7, "lng": -96.8, "accuracy": 12.0}
        today = timeclock.todays_entries(db, org.crew_ctx)
        assert today["is_clocked_in"]
        assert len(today["entries"]) == 1

        closed = timeclock.clock_out(db, org.crew_ctx)
        assert closed.clock_out is not None
        assert not timeclock.todays_entries(db, org.crew_ctx)["is_clocked_in"]

    def test_double_clock_in(self, db, org):
        timeclock.clock_in(db, org.crew_ctx)
        with pytest.raises(ConflictError):
            timeclock.clock_in(db, org.crew_ctx)

    def test_clock_out_when_not_clocked_in(self, db, org):
        with pytest.raises(ConflictError):
            timeclock.clock_out(db, org.crew_ctx)

    @pytest.mark.parametrize("location", [
        {"lat": 91, "lng": 0},
        {"lng": 10},
        {"lat": 10, "lng": 10, "accuracy": -1},
        {"lat": 10, "lng": 10, "accuracy": "far"},
    ])
    def test_bad_location(self, db, org, location):
        with pytest.raises(ValidationFailedError):
            timeclock.clock_in(db, org.crew_ctx, location=location)

    def test_clock_in_against_someone_elses_job(self, db, org, make, ctx_for, job):
        other_crew = make.user(org.tenant, "crew")
        with pytest.raises(NotFoundError):
            timeclock.clock_in(db, ctx_for(other_crew), assignment_id=job.id)

    def test_total_hours(self, db, org):
        now = utcnow().replace(hour=15, minute=0, second=0, microsecond=0)
        db.add(CrewTimeEntry(tenant_id=org.tenant.id, crew_member_id=org.crew.id,
                             clock_in=now - timedelta(hours=7), clock_out=now - timedelta(hours=4)))
        db.add(CrewTimeEntry(tenant_id=org.tenant.id, crew_member_id=org.crew.id,
                             clock_in=now - timedelta(hours=2)))
        db.commit()
        today = timeclock.todays_entries(db, org.crew_ctx, now=now)
        assert today["total_hours"] == 5.0
        assert today["is_clocked_in"]
        assert today["entries"][0]["is_open"]


class TestAssignments:
    def test_default_buckets(self, db, org, job):
        buckets = {b.key: b.required_count for b in db.query(PhotoBucket).filter_by(assignment_id=job.id)}
        assert buckets == {"before": 1, "during": 0, "after": 1}
        assert job.status == "assigned"

    def test_only_dispatchers_create(self, db, org):
        with pytest.raises(PermissionDeniedError):
            assignments.create_assignment(db, org.crew_ctx, {"title": "x", "assigned_to": org.crew.id})

    @pytest.mark.parametrize("data", [
        {"title": " "},
        {"title": "Job", "assigned_to": "nobody"},
        {"title": "Job", "site_lat": 10},
        {"title": "Job", "scheduled_date": "next tuesday"},
        {"title": "Job", "photo_buckets": [{"key": "a"}, {"key": "a"}]},
        {"title": "Job", "checklist": [{"label": "Photo", "requires_photo": True, "photo_bucket": "nope"}]},
    ])
    def test_invalid_payloads(self, db, org, data):
        data.setdefault("assigned_to", org.crew.id)
        with pytest.raises(ValidationFailedError):
            assignments.create_assignment(db, org.manager_ctx, data)

    def test_crew_only_sees_own_jobs(self, db, org, make, ctx_for, job):
        other_crew = ctx_for(make.user(org.tenant, "crew"))
        with pytest.raises(NotFoundError):
            assignments.get_assignment(db, other_crew, job.id)
        assert assignments.list_assignments(db, other_crew) == []
        assert [a.id for a in assignments.list_assignments(db, org.crew_ctx)] == [job.id]

    def test_status_machine(self, db, org, job):
        for status in ("en_route", "on_site", "work_started", "waiting", "work_started"):
            assert assignments.update_status(db, org.crew_ctx, job.id, status).status == status
        with pytest.raises(ValidationFailedError, match="Cannot change job status"):
            assignments.update_status(db, org.crew_ctx, job.id, "assigned")

    def test_cannot_skip_states(self, db, org, job):
        with pytest.raises(ValidationFailedError):
            assignments.update_status(db, org.crew_ctx, job.id, "on_site")
        with pytest.raises(ValidationFailedError):
            assignments.update_status(db, org.crew_ctx, job.id, "flying")

    def test_completion_is_gated(self, db, org, job):
        for status in ("en_route", "on_site", "work_started"):
            assignments.update_status(db, org.crew_ctx, job.id, status)
        with pytest.raises(ValidationFailedError) as exc_info:
            assignments.update_status(db, org.crew_ctx, job.id, "completed")
        missing = exc_info.value.details["missing"]
        assert "Before: 0/1 photos" in missing
        assert "After: 0/1 photos" in missing
        assert "Checklist: Tarp landscaping" in missing

        _photo(db, job, "before")
        _photo(db, job, "after")
        items = assignments.completion_status(db, job)["checklist"]["items"]
        for item in items:
            assignments.toggle_checklist_item(db, org.crew_ctx, job.id, item["id"], True)

        status = assignments.completion_status(db, job)
        assert status["can_complete"]
        assert status["checklist"]["checked"] == 2
        done = assignments.update_status(db, org.crew_ctx, job.id, "completed")
        assert done.completed_at is not None
        assert assignments.list_assignments(db, org.crew_ctx) == []

    def test_photo_item_needs_photo(self, db, org, job):
        items = assignments.completion_status(db, job)["checklist"]["items"]
        photo_item = next(i for i in items if i["requires_photo"])
        with pytest.raises(ValidationFailedError, match="Add a photo"):
            assignments.toggle_checklist_item(db, org.crew_ctx, job.id, photo_item["id"], True)
        plain = next(i for i in items if not i["requires_photo"])
        item = assignments.toggle_checklist_item(db, org.crew_ctx, job.id, plain["id"], True)
        assert item.checked_by == org.crew.id
        item = assignments.toggle_checklist_item(db, org.crew_ctx, job.id, plain["id"], False)
        assert item.checked_at is None

    def test_to_dict(self, db, org, job):
        data = assignments.assignment_to_dict(db, job)
        assert data["next_statuses"] == ["en_route"]
        assert data["completion"]["can_complete"] is False


class TestGps:
    def test_throttle(self, db, org):
        t0 = utcnow()
        assert gps.sync_location(db, org.crew_ctx, 32.0, -96.0, recorded_at=t0)["accepted"]
        throttled = gps.sync_location(db, org.crew_ctx, 32.0, -96.0, recorded_at=t0 + timedelta(seconds=5))
        assert throttled == {"accepted": False, "reason": "throttled", "arrival_suggested": False}
        assert gps.sync_location(db, org.crew_ctx, 32.0, -96.0, recorded_at=t0 + timedelta(seconds=20))["accepted"]

    def test_client_timestamp_stored_as_utc(self, db, org):
        central = timezone(timedelta(hours=-6))
        sent = datetime(2026, 3, 18, 7, 30, tzinfo=central)
        assert gps.sync_location(db, org.crew_ctx, 32.0, -96.0, recorded_at=sent)["accepted"]
        ping = db.query(CrewLocationPing).filter_by(crew_member_id=org.crew.id).one()
        assert ping.recorded_at == datetime(2026, 3, 18, 13, 30)
        throttled = gps.sync_location(db, org.crew_ctx, 32.0, -96.0,
                                      recorded_at=datetime(2026, 3, 18, 13, 30, 5, tzinfo=timezone.utc))
        assert throttled["accepted"] is False

    def test_invalid_coordinates(self, db, org):
        with pytest.raises(ValidationFailedError):
            gps.sync_location(db, org.crew_ctx, None, 10)
        with pytest.raises(ValidationFailedError):
            gps.sync_location(db, org.crew_ctx, 10, 10, accuracy="close")

    def test_arrival_suggested_near_en_route_site(self, db, org, job):
        far = gps.sync_location(db, org.crew_ctx, SITE[0] + 0.001, SITE[1])
        assert far["arrival_suggested"] is False

        assignments.update_status(db, org.crew_ctx, job.id, "en_route")
        near = gps.sync_location(db, org.crew_ctx, SITE[0] + 0.001, SITE[1],
                                 recorded_at=utcnow() + timedelta(minutes=1))
        assert near["arrival_suggested"]
        assert near["assignment_id"] == job.id
        assert 100 < near["distance_m"] < 125

        away = gps.sync_location(db, org.crew_ctx, SITE[0] + 0.01, SITE[1],
                                 recorded_at=utcnow() + timedelta(minutes=2))
        assert away["arrival_suggested"] is False

    def test_latest_locations(self, db, org, make, ctx_for):
        t0 = utcnow()
        gps.sync_location(db, org.crew_ctx, 32.0, -96.0, recorded_at=t0)
        gps.sync_location(db, org.crew_ctx, 32.5, -96.5, recorded_at=t0 + timedelta(minutes=1))
        other = ctx_for(make.user(org.tenant, "crew", first="Dana", last="Driver"))
        gps.sync_location(db, other, 33.0, -97.0, recorded_at=t0)

        latest = gps.latest_locations(db, org.manager_ctx)
        assert len(latest) == 2
        by_member = {row["crew_member_id"]: row for row in latest}
        assert by_member[org.crew.id]["latitude"] == 32.5
        assert by_member[other.user_id]["name"] == "Dana Driver"

    def test_latest_locations_is_manager_only(self, db, org):
        with pytest.raises(PermissionDeniedError):
            gps.latest_locations(db, org.crew_ctx)
