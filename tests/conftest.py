"""
Shared pytest fixtures for the UniSync ShowSet test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - engine / variant fixtures for the pure workflow tests
    - actor fixtures, one per role
    - make_showset: snapshot builder with arbitrary stage statuses
"""

from datetime import datetime, timezone

import pytest

from unisync import create_app
from unisync.models import db as _db
from unisync.workflow import (
    STAGE_ORDER,
    Actor,
    ShowSet,
    StageRecord,
    StageStatus,
    WorkflowEngine,
)
from unisync.workflow.variants import LEGACY, STANDARD, STRUCTURE_REVIEW

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
T1 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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


# ── Workflow fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def engine():
    return WorkflowEngine(STANDARD)


@pytest.fixture()
def review_engine():
    """structure passes through engineer_review."""
    return WorkflowEngine(STRUCTURE_REVIEW)


@pytest.fixture()
def legacy_engine():
    return WorkflowEngine(LEGACY)


@pytest.fixture()
def admin():
    return Actor("u-admin", "admin", name="Ada Admin")


@pytest.fixture()
def modeller():
    return Actor("u-3d", "3d_modeller", name="Mo Modeller")


@pytest.fixture()
def drafter():
    return Actor("u-2d", "2d_drafter", name="Dee Drafter")


@pytest.fixture()
def engineer():
    return Actor("u-eng", "engineer", name="Eve Engineer")


@pytest.fixture()
def customer():
    return Actor("u-cust", "customer_reviewer", name="Cal Customer")


@pytest.fixture()
def coordinator():
    return Actor("u-bim", "bim_coordinator", name="Bo Coordinator")


@pytest.fixture()
def viewer():
    return Actor("u-view", "view_only")


def build_showset(showset_id="SS-07-01", locked=False, **statuses) -> ShowSet:
    """Snapshot with the given stage statuses; unspecified stages are not_started.

    ``revision_note`` for revision_required stages defaults to "seed".
    """
    stages = {}
    for name in STAGE_ORDER:
        status = StageStatus(statuses.pop(name.value, StageStatus.NOT_STARTED))
        note = "seed" if status == StageStatus.REVISION_REQUIRED else None
        stages[name] = StageRecord(
            status=status, updated_by="seed", updated_at=T0,
            revision_note=note,
            revision_note_by="seed" if note else None,
            revision_note_at=T0 if note else None,
        )
    versions = {k: statuses.pop(k) for k in ("screen_version", "revit_version", "drawing_version")
                if k in statuses}
    assert not statuses, f"unknown keys: {statuses}"
    return ShowSet(
        showset_id=showset_id, area="311", scene="SC07", stages=stages,
        locked_at=T0 if locked else None,
        locked_by="u-admin" if locked else None,
        **versions,
    )


@pytest.fixture()
def make_showset():
    return build_showset
