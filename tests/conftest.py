"""
Shared pytest fixtures for the governance service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - headers: builds trusted identity headers for a principal
    - make_* / add_member / publish_criteria: ORM factories (bypass the API)
    - governed_review: a submission already in review on a 3-seat board
"""

from datetime import UTC, datetime, timedelta

import pytest

from atlas import create_app
from atlas.models import db as _db
from atlas.models.governance import (
    GovernanceBoard,
    GovernanceCriteriaVersion,
    GovernanceMembership,
    GovernanceSettings,
)
from atlas.models.intake import IntakeForm, IntakeSubmission

# 60 / 40 split; a voter scoring (5, 2) lands on 3.8 and (3, 1) on 2.2
DEFAULT_CRITERIA = [
    {"id": "alignment", "name": "Strategic alignment", "weight": 60, "enabled": True, "sortOrder": 1},
    {"id": "feasibility", "name": "Feasibility", "weight": 40, "enabled": True, "sortOrder": 2},
]


def _headers(oid, *roles, name=None):
    h = {"X-User-Oid": oid}
    if roles:
        h["X-User-Roles"] = ",".join(roles)
    if name:
        h["X-User-Name"] = name
    return h


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


@pytest.fixture()
def headers():
    """``headers("u-1", "governance_chair")`` → X-User-Oid / X-User-Roles dict."""
    return _headers


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_settings():
    def _make(enabled=True, **policy):
        settings = GovernanceSettings(governance_enabled=enabled, **policy)
        _db.session.add(settings)
        _db.session.commit()
        return settings
    return _make


@pytest.fixture()
def make_board():
    def _make(name="Digital Investment Board", is_active=True):
        board = GovernanceBoard(name=name, is_active=is_active, created_by_oid="u-admin")
        _db.session.add(board)
        _db.session.commit()
        return board
    return _make


@pytest.fixture()
def add_member():
    def _add(board, oid, role="member", is_active=True, effective_from=None, effective_to=None):
        membership = GovernanceMembership(
            board_id=board.id,
            user_oid=oid,
            role=role,
            is_active=is_active,
            effective_from=effective_from or datetime.now(UTC) - timedelta(days=1),
            effective_to=effective_to,
        )
        _db.session.add(membership)
        _db.session.commit()
        return membership
    return _add


@pytest.fixture()
def publish_criteria():
    """Insert a published version directly, retiring the current one."""
    def _publish(board, criteria=None, version_no=None):
        GovernanceCriteriaVersion.query.filter_by(board_id=board.id, status="published").update(
            {"status": "retired"}
        )
        if version_no is None:
            version_no = GovernanceCriteriaVersion.query.filter_by(board_id=board.id).count() + 1
        version = GovernanceCriteriaVersion(
            board_id=board.id,
            version_no=version_no,
            status="published",
            criteria=criteria if criteria is not None else [dict(c) for c in DEFAULT_CRITERIA],
            published_at=datetime.now(UTC),
        )
        _db.session.add(version)
        _db.session.commit()
        return version
    return _publish


@pytest.fixture()
def make_form():
    def _make(board=None, mode="required", is_active=True, name="Digital request"):
        form = IntakeForm(
            name=name,
            is_active=is_active,
            fields=[{"key": "summary", "type": "text"}],
            governance_mode=mode,
            governance_board_id=board.id if board else None,
        )
        _db.session.add(form)
        _db.session.commit()
        return form
    return _make


@pytest.fixture()
def make_submission():
    def _make(
        form,
        governance_status="not-started",
        governance_required=True,
        status="pending",
        submitter_oid="u-submitter",
        decision=None,
        priority_score=None,
        submitted_at=None,
    ):
        submission = IntakeSubmission(
            form_id=form.id,
            submitter_oid=submitter_oid,
            submitter_name="Sam Submitter",
            form_data={"summary": "Patient portal refresh"},
            status=status,
            governance_required=governance_required,
            governance_status=governance_status,
            governance_decision=decision,
            priority_score=priority_score,
            submitted_at=submitted_at or datetime.now(UTC),
        )
        _db.session.add(submission)
        _db.session.commit()
        return submission
    return _make


@pytest.fixture()
def governed_review(make_settings, make_board, add_member, publish_criteria, make_form, make_submission):
    """Submission in review: chair u-chair, members u-m1 / u-m2, default quorum (2 of 3)."""
    from atlas.services import review_service

    make_settings(enabled=True)
    board = make_board()
    add_member(board, "u-chair", role="chair")
    add_member(board, "u-m1")
    add_member(board, "u-m2")
    version = publish_criteria(board)
    form = make_form(board=board)
    submission = make_submission(form)
    review = review_service.start_review(submission.id, "u-admin")
    return {
        "board_id": board.id,
        "form_id": form.id,
        "submission_id": submission.id,
        "review_id": review.id,
        "version_id": version.id,
    }
