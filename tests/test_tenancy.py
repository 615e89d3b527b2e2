"""Tests for tenant provisioning, users and locations."""

import pytest

from roofops import tenancy
from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.database import DynamicTag, Location, Profile


def _provision(db, subdomain="summit", email="boss@summit.test"):
    return tenancy.provision_tenant(
        db, name="Summit Roofing", subdomain=subdomain,
        owner_email=email, owner_password="supersecret", first_name="Sue", last_name="Boss",
    )


class TestProvision:
    def test_creates_tenant_owner_location_and_tags(self, db):
        result = _provision(db)
        tenant_id = result["tenant"]["id"]
        assert result["owner"]["role"] == "owner"
        assert result["owner"]["email"] == "boss@summit.test"
        assert result["location"]["name"] == "Summit Roofing HQ"
        loc = db.query(Location).filter(Location.tenant_id == tenant_id).one()
        assert loc.manager_id == result["owner"]["id"]
        tags = db.query(DynamicTag).filter(DynamicTag.tenant_id == tenant_id).count()
        assert tags > 0

    def test_subdomain_must_be_unique(self, db):
        _provision(db)
        with pytest.raises(ConflictError):
            _provision(db, email="other@summit.test")

    def test_email_is_unique_across_tenants(self, db):
        _provision(db)
        with pytest.raises(ConflictError):
            _provision(db, subdomain="other")

    @pytest.mark.parametrize("subdomain", ["Bad Name", "-lead", "trail-", ""])
    def test_rejects_bad_subdomain(self, db, subdomain):
        with pytest.raises(ValidationFailedError):
            _provision(db, subdomain=subdomain)

    def test_rejects_short_password(self, db):
        with pytest.raises(ValidationFailedError):
            tenancy.provision_tenant(db, "X Co", "xco", "a@x.test", "short")


class TestUsers:
    def test_admin_creates_user(self, db, org):
        profile = tenancy.create_user(db, org.owner_ctx, "New.Rep@Acme.test", "password123", "sales_rep")
        assert profile.email == "new.rep@acme.test"
        assert profile.tenant_id == org.tenant.id

    def test_non_admin_cannot_create(self, db, org):
        with pytest.raises(PermissionDeniedError):
            tenancy.create_user(db, org.manager_ctx, "x@acme.test", "password123", "sales_rep")

    def test_cannot_create_higher_role(self, db, org, make, ctx_for):
        admin = make.user(org.tenant, "office_admin")
        with pytest.raises(PermissionDeniedError):
            tenancy.create_user(db, ctx_for(admin), "x@acme.test", "password123", "owner")

    def test_only_master_creates_master(self, db, org):
        with pytest.raises(PermissionDeniedError):
            tenancy.create_user(db, org.owner_ctx, "x@acme.test", "password123", "master")

    def test_unknown_role(self, db, org):
        with pytest.raises(ValidationFailedError):
            tenancy.create_user(db, org.owner_ctx, "x@acme.test", "password123", "wizard")

    def test_deactivate(self, db, org):
        tenancy.deactivate_user(db, org.owner_ctx, org.rep.id)
        assert db.get(Profile, org.rep.id).is_active is False
        active = {p.id for p in tenancy.list_users(db, org.owner_ctx)}
        assert org.rep.id not in active

    def test_cannot_deactivate_self(self, db, org):
        with pytest.raises(ValidationFailedError):
            tenancy.deactivate_user(db, org.owner_ctx, org.owner.id)

    def test_cannot_reach_other_tenant(self, db, org, make, ctx_for):
        other = make.tenant(name="Other")
        stranger = make.user(other, "sales_rep")
        with pytest.raises(NotFoundError):
            tenancy.deactivate_user(db, org.owner_ctx, stranger.id)


class TestLocations:
    def test_create_and_update(self, db, org):
        loc = tenancy.create_location(db, org.owner_ctx, {"name": "North", "address_city": "Plano"})
        tenancy.update_location(db, org.owner_ctx, loc.id, {"phone": "555-0123"})
        names = [loc.name for loc in tenancy.list_locations(db, org.rep_ctx)]
        assert "North" in names
        assert tenancy.get_location(db, org.rep_ctx, loc.id).phone == "555-0123"

    def test_name_required(self, db, org):
        with pytest.raises(ValidationFailedError):
            tenancy.create_location(db, org.owner_ctx, {"name": "  "})

    def test_rep_cannot_create(self, db, org):
        with pytest.raises(PermissionDeniedError):
            tenancy.create_location(db, org.rep_ctx, {"name": "South"})
