"""Tests for projects and production workflow."""

import pytest

from roofops import projects
from roofops.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from roofops.database import CommunicationHistory
from roofops.pipeline.transitions import transition_entry


@pytest.fixture
def converted(db, org, make):
    entry = make.entry(org.rep_ctx, status="contingency_signed", estimated_value=22_000)
    result = transition_entry(db, org.manager_ctx, entry.id, "project")
    return projects.get_project(db, org.manager_ctx, result.project_id)


def test_conversion_logs_communication(db, org, converted):
    note = db.query(CommunicationHistory).filter_by(project_id=converted.id).one()
    assert note.subject == "Lead Converted to Project"
    assert converted.name == "Jane Homeowner - 12 Oak St"


def test_project_to_dict_includes_production(db, org, converted):
    data = projects.project_to_dict(converted, projects.get_workflow(db, converted))
    assert data["address"].startswith("12 Oak St")
    assert data["production"]["current_stage"] == "submit_documents"
    assert data["production"]["current_stage_label"] == "Submit Documents"
    assert len(data["production"]["stage_history"]) == 1


def test_advance_production(db, org, converted):
    data = projects.advance_production(db, org.manager_ctx, converted.id, "permit_processing")
    assert data["production"]["status"] == "in_progress"
    assert data["status"] == "active"
    assert [h["stage"] for h in data["production"]["stage_history"]] == [
        "submit_documents", "permit_processing",
    ]


def test_closing_completes_project(db, org, converted):
    data = projects.advance_production(db, org.manager_ctx, converted.id, "closed")
    assert data["status"] == "completed"
    assert data["actual_completion_date"] is not None
    assert data["production"]["status"] == "completed"

    reopened = projects.advance_production(db, org.manager_ctx, converted.id, "final_inspection")
    assert reopened["status"] == "active"
    assert reopened["actual_completion_date"] is None


def test_project_manager_can_advance(db, org, make, ctx_for, converted):
    pm = make.user(org.tenant, "project_manager")
    data = projects.advance_production(db, ctx_for(pm), converted.id, "materials_labor")
    assert data["production"]["current_stage"] == "materials_labor"


def test_rep_cannot_advance(db, org, converted):
    with pytest.raises(PermissionDeniedError):
        projects.advance_production(db, org.rep_ctx, converted.id, "permit_processing")


def test_unknown_stage(db, org, converted):
    with pytest.raises(ValidationFailedError):
        projects.advance_production(db, org.manager_ctx, converted.id, "party")


def test_missing_workflow_is_created(db, org, make):
    project = make.project(org.manager_ctx)
    data = projects.advance_production(db, org.manager_ctx, project.id, "in_progress")
    assert data["production"]["current_stage"] == "in_progress"


def test_tenant_isolation(db, org, make, ctx_for, converted):
    other = make.tenant(name="Other")
    outsider = make.user(other, "owner")
    with pytest.raises(NotFoundError):
        projects.get_project(db, ctx_for(outsider), converted.id)
    assert projects.list_projects(db, ctx_for(outsider)) == []
    assert [p.id for p in projects.list_projects(db, org.rep_ctx, status="active")] == [converted.id]
