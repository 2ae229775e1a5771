"""
Shared pytest fixtures for the WorkPro test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / site / ctx: default tenant scope for service calls
    - other_tenant / other_ctx: a second tenant for isolation tests
    - make_stock / make_work_order: factories for ledger + lifecycle data
    - headers: builds the forwarded identity headers for API calls
"""

import pytest

from workpro import create_app
from workpro.core.context import RequestContext
from workpro.models import db as _db
from workpro.models.inventory import PartStock
from workpro.models.tenant import Site, Tenant
from workpro.services import work_order_lifecycle as lifecycle
from workpro.services.contracts import WorkOrderCreateRequest


def _make_tenant(slug="acme", name=None, is_active=True):
    t = Tenant(name=name or slug.title(), slug=slug, is_active=is_active)
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_site(tenant_id, name="Plant 1"):
    s = Site(tenant_id=tenant_id, name=name)
    _db.session.add(s)
    _db.session.flush()
    return s


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions.pop("notify_user", None)
        yield
        app.extensions.pop("notify_user", None)
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Scope fixtures ───────────────────────────────────────────────────────


@pytest.fixture()
def tenant():
    t = _make_tenant("acme")
    _db.session.commit()
    return t


@pytest.fixture()
def site(tenant):
    s = _make_site(tenant.id)
    _db.session.commit()
    return s


@pytest.fixture()
def ctx(tenant, site):
    """Technician acting inside tenant ``acme`` / site ``Plant 1``."""
    return RequestContext(tenant_id=tenant.id, site_id=site.id, user_id="tech-1")


@pytest.fixture()
def other_tenant():
    t = _make_tenant("globex")
    _db.session.commit()
    return t


@pytest.fixture()
def other_ctx(other_tenant):
    s = _make_site(other_tenant.id, name="Depot")
    _db.session.commit()
    return RequestContext(tenant_id=other_tenant.id, site_id=s.id, user_id="tech-9")


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_stock():
    """Factory: ``make_stock(ctx, part_id="P-100", on_hand=10, unit_cost=5.0)``."""

    def _factory(scope, part_id="P-100", on_hand=10, reserved=0, unit_cost=5.0, name="Bearing"):
        stock = PartStock(
            tenant_id=scope.tenant_id,
            site_id=scope.site_id,
            part_id=part_id,
            part_name=name,
            on_hand=on_hand,
            reserved=reserved,
            unit_cost=unit_cost,
        )
        _db.session.add(stock)
        _db.session.commit()
        return stock

    return _factory


@pytest.fixture()
def make_work_order():
    """Factory: ``make_work_order(ctx, title="Pump overhaul", **create_fields)``."""

    def _factory(scope, title="Pump overhaul", **fields):
        req = WorkOrderCreateRequest(title=title, **fields)
        return lifecycle.create_work_order(scope, req).work_order

    return _factory


@pytest.fixture()
def headers():
    """Factory: forwarded identity headers for a ``RequestContext``."""

    def _factory(scope):
        h = {"X-Tenant-Id": str(scope.tenant_id), "X-User-Id": scope.user_id or ""}
        if scope.site_id is not None:
            h["X-Site-Id"] = str(scope.site_id)
        return h

    return _factory
