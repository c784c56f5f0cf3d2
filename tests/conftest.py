"""
Shared pytest fixtures for the sequencer test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / location / catalog / staff_member: seeded domain objects
    - make_staff / site_week: factories for extra staff and plan weeks
"""

import pytest

from sequencer import create_app
from sequencer.models import db as _db
from tests.helpers import PROGRAM_START

ACTIONS_PER_DOMAIN = 5
DOMAIN_NAMES = ("Clinical", "Clerical", "Culture")


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def org():
    from sequencer.models.organization import Organization
    o = Organization(name="Lakeside Dental", timezone="America/Chicago")
    _db.session.add(o)
    _db.session.commit()
    return o


@pytest.fixture()
def location(org):
    from sequencer.models.organization import Location
    loc = Location(
        org_id=org.id,
        name="Lakeside North",
        timezone="America/Chicago",
        program_start_date=PROGRAM_START,
        cycle_length_weeks=6,
    )
    _db.session.add(loc)
    _db.session.commit()
    return loc


@pytest.fixture()
def catalog():
    """One role with 15 active pro-moves spread over three domains.

    Returns a dict: ``role``, ``domains`` (list), ``actions`` (list of ids,
    ordered), ``by_domain`` (domain id -> action ids).
    """
    from sequencer.models.catalog import Competency, Domain, ProMove, Role

    role = Role(name="Hygienist")
    _db.session.add(role)
    _db.session.flush()

    domains, actions, by_domain = [], [], {}
    for name in DOMAIN_NAMES:
        domain = Domain(name=name)
        _db.session.add(domain)
        _db.session.flush()
        competency = Competency(domain_id=domain.id, name=f"{name} basics")
        _db.session.add(competency)
        _db.session.flush()
        domains.append(domain)
        by_domain[domain.id] = []
        for i in range(ACTIONS_PER_DOMAIN):
            pm = ProMove(role_id=role.id, competency_id=competency.id,
                         statement=f"{name} pro-move {i + 1}")
            _db.session.add(pm)
            _db.session.flush()
            actions.append(pm.id)
            by_domain[domain.id].append(pm.id)
    _db.session.commit()
    return {"role": role, "domains": domains, "actions": actions, "by_domain": by_domain}


@pytest.fixture()
def staff_member(location, catalog):
    from sequencer.models.staff import Staff
    s = Staff(name="Pat Rivera", role_id=catalog["role"].id, primary_location_id=location.id)
    _db.session.add(s)
    _db.session.commit()
    return s


@pytest.fixture()
def make_staff(location, catalog):
    """Factory for additional staff at the default site."""
    from sequencer.models.staff import Staff

    def _make(name):
        s = Staff(name=name, role_id=catalog["role"].id, primary_location_id=location.id)
        _db.session.add(s)
        _db.session.commit()
        return s
    return _make


@pytest.fixture()
def site_week(org, catalog):
    """Factory writing a proposed week with the given (or first three) actions."""
    from sequencer.services import plan_store
    from sequencer.services.ranking import RankedPick

    def _write(week_start, action_ids=None):
        ids = action_ids or catalog["actions"][:3]
        picks = [RankedPick(action_id=a, score=1.0 - i * 0.1) for i, a in enumerate(ids)]
        plan_store.upsert_proposed(org.id, catalog["role"].id, week_start, picks)
        _db.session.commit()
        return plan_store.get_week(org.id, catalog["role"].id, week_start)
    return _write
