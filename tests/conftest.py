"""
Pytest configuration and shared fixtures.

The whole suite runs against one in-memory SQLite database (the engine
uses a StaticPool, so every ``get_db()`` session shares the connection).
Tables are recreated for each test.

Fixtures available to all tests:
  * db          - a session on the test database
  * make        - factories for tenants, users, contacts, entries, projects
  * ctx_for     - build a UserContext for a profile
  * org         - a provisioned tenant with one user per common role
  * api_request - a fake starlette Request carrying a UserContext
"""

from __future__ import annotations

import io
import os
import sys
from datetime import datetime
from types import SimpleNamespace

# Must be set before roofops.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("AUTH_SECRET", "test-secret")
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"

import pytest
from PIL import Image

# Ensure the project root is on the path so all roofops imports resolve.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from roofops import config  # noqa: E402
from roofops.auth import hash_password  # noqa: E402
from roofops.cache_backend import reset_cache_backend_for_tests  # noqa: E402
from roofops.database import (  # noqa: E402
    Base, Contact, PipelineEntry, Profile, Project, SessionLocal, Tenant, engine,
)
from roofops.domain.models import UserContext  # noqa: E402
from roofops.metrics import reset_metrics_for_tests  # noqa: E402
from roofops.pipeline.board import create_entry  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_state(tmp_path, monkeypatch):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(config, "STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setattr(config, "REDIS_URL", "")
    reset_cache_backend_for_tests()
    reset_metrics_for_tests()
    yield
    reset_cache_backend_for_tests()


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


def _ctx(profile: Profile) -> UserContext:
    return UserContext(
        user_id=profile.id,
        tenant_id=profile.tenant_id,
        role=profile.role,
        name=" ".join(p for p in (profile.first_name, profile.last_name) if p) or profile.email,
        email=profile.email,
        location_id=profile.location_id,
    )


@pytest.fixture
def ctx_for():
    return _ctx


class Factory:
    """Row builders.  Every helper commits."""

    def __init__(self, db):
        self.db = db
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    def tenant(self, name: str = "Acme Roofing", subdomain: str = None) -> Tenant:
        n = self._next()
        tenant = Tenant(name=name, subdomain=subdomain or f"acme{n}", phone="555-0100", email=f"office{n}@acme.test")
        self.db.add(tenant)
        self.db.commit()
        return tenant

    def user(self, tenant: Tenant, role: str = "sales_rep", first: str = None, last: str = "Tester",
             email: str = None, password: str = "password123", phone: str = None) -> Profile:
        n = self._next()
        profile = Profile(
            tenant_id=tenant.id,
            email=email or f"{role}{n}@acme.test",
            password_hash=hash_password(password, iterations=1000),
            first_name=first or role.replace("_", " ").title().replace(" ", ""),
            last_name=last,
            phone=phone,
            role=role,
        )
        self.db.add(profile)
        self.db.commit()
        return profile

    def contact(self, ctx: UserContext, first: str = "Jane", last: str = "Homeowner", **fields) -> Contact:
        contact = Contact(
            tenant_id=ctx.tenant_id,
            first_name=first,
            last_name=last,
            address_street=fields.pop("address_street", "12 Oak St"),
            address_city=fields.pop("address_city", "Dallas"),
            address_state=fields.pop("address_state", "TX"),
            address_zip=fields.pop("address_zip", "75001"),
            created_by=ctx.user_id,
            **fields,
        )
        self.db.add(contact)
        self.db.commit()
        return contact

    def entry(self, ctx: UserContext, contact: Contact = None, status: str = "lead",
              created_at: datetime = None, **kwargs) -> PipelineEntry:
        contact = contact or self.contact(ctx)
        entry = create_entry(self.db, ctx, contact.id, **kwargs)
        if status != "lead" or created_at is not None:
            entry.status = status
            if created_at is not None:
                entry.created_at = created_at
                entry.status_entered_at = created_at
            self.db.commit()
        return entry

    def project(self, ctx: UserContext, entry: PipelineEntry = None, status: str = "active",
                selling_price: float = 10_000.0, contract_amount: float = None,
                created_at: datetime = None, completed_at: datetime = None) -> Project:
        project = Project(
            tenant_id=ctx.tenant_id,
            pipeline_entry_id=entry.id if entry else None,
            contact_id=entry.contact_id if entry else None,
            name="Test project",
            status=status,
            selling_price=selling_price,
            contract_amount=contract_amount,
            actual_completion_date=completed_at,
            created_by=ctx.user_id,
        )
        if created_at is not None:
            project.created_at = created_at
        self.db.add(project)
        self.db.commit()
        return project


@pytest.fixture
def make(db):
    return Factory(db)


@pytest.fixture
def org(make):
    """One tenant with an owner, sales manager, two reps and a crew member."""
    tenant = make.tenant()
    owner = make.user(tenant, "owner", first="Olivia", last="Owner")
    manager = make.user(tenant, "sales_manager", first="Mark", last="Manager")
    rep = make.user(tenant, "sales_rep", first="Rita", last="Rep", phone="555-0199")
    rep2 = make.user(tenant, "sales_rep", first="Sam", last="Seller")
    crew = make.user(tenant, "crew", first="Carl", last="Crew")
    return SimpleNamespace(
        tenant=tenant,
        owner=owner, manager=manager, rep=rep, rep2=rep2, crew=crew,
        owner_ctx=_ctx(owner), manager_ctx=_ctx(manager),
        rep_ctx=_ctx(rep), rep2_ctx=_ctx(rep2), crew_ctx=_ctx(crew),
    )


@pytest.fixture
def api_request():
    """Build a minimal request object the routers can read a context from."""
    def _build(ctx: UserContext = None):
        return SimpleNamespace(state=SimpleNamespace(user_ctx=ctx), headers={}, cookies={})
    return _build


@pytest.fixture
def jpeg_bytes():
    def _build(width: int = 200, height: int = 100, color=(120, 120, 120)) -> bytes:
        buf = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buf, format="JPEG")
        return buf.getvalue()
    return _build
