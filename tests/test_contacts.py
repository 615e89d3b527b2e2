"""Tests for contacts and the communication log."""

import pytest

from roofops import contacts
from roofops.core.exceptions import NotFoundError, ValidationFailedError


def test_create_normalises_fields(db, org):
    c = contacts.create_contact(db, org.rep_ctx, {
        "first_name": " Pat ", "last_name": "Lee", "email": "PAT@Example.TEST", "phone": "",
        "address_city": "Plano", "tags": ["storm"],
    })
    data = contacts.contact_to_dict(c)
    assert data["first_name"] == "Pat"
    assert data["email"] == "pat@example.test"
    assert data["phone"] is None
    assert data["name"] == "Pat Lee"
    assert data["tags"] == ["storm"]


@pytest.mark.parametrize("data", [
    {"email": "nobody@example.test"},
    {"first_name": "A", "latitude": 32.0},
    {"first_name": "A", "latitude": 120.0, "longitude": 0.0},
    {"first_name": "A", "tags": "storm"},
])
def test_create_rejects_invalid(db, org, data):
    with pytest.raises(ValidationFailedError):
        contacts.create_contact(db, org.rep_ctx, data)


def test_company_name_is_enough(db, org):
    c = contacts.create_contact(db, org.rep_ctx, {"company_name": "Oak Apartments"})
    assert contacts.contact_display_name(c) == "Oak Apartments"


def test_update_is_partial(db, org, make):
    c = make.contact(org.rep_ctx, email="jane@example.test")
    contacts.update_contact(db, org.rep_ctx, c.id, {"phone": "555-0111"})
    db.refresh(c)
    assert c.phone == "555-0111"
    assert c.email == "jane@example.test"
    with pytest.raises(ValidationFailedError):
        contacts.update_contact(db, org.rep_ctx, c.id, {"first_name": None, "last_name": ""})


def test_search(db, org, make):
    make.contact(org.rep_ctx, first="Jane")
    make.contact(org.rep_ctx, first="Omar", last="Ruiz", address_city="Austin")
    assert [c.first_name for c in contacts.list_contacts(db, org.rep_ctx, q="aus")] == ["Omar"]
    assert len(contacts.list_contacts(db, org.rep_ctx)) == 2
    assert len(contacts.list_contacts(db, org.rep_ctx, limit=1)) == 1


def test_tenant_isolation(db, org, make, ctx_for):
    c = make.contact(org.rep_ctx)
    outsider = ctx_for(make.user(make.tenant(name="Other"), "owner"))
    with pytest.raises(NotFoundError):
        contacts.get_contact(db, outsider, c.id)
    assert contacts.list_contacts(db, outsider) == []


def test_communication_log(db, org, make):
    c = make.contact(org.rep_ctx)
    contacts.log_communication(db, org.rep_ctx, c.id, "Called", "Left voicemail", communication_type="internal")
    db.commit()
    [row] = contacts.list_communications(db, org.rep_ctx, c.id)
    assert row["subject"] == "Called"
    assert row["communication_type"] == "internal"
