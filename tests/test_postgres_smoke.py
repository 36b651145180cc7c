"""Optional Postgres smoke test; run only when POSTGRES_TEST_URL is set (schema via Alembic)."""

import os

import pytest
from helpers import CLIENT, DESIGNER, STUDY_ONLY_CASE
from sqlalchemy import text

from guide_orders.db import init_db, session_scope
from guide_orders.engine import CaseStatusEngine

POSTGRES_TEST_URL = os.environ.get("POSTGRES_TEST_URL")

requires_postgres = pytest.mark.skipif(
    not POSTGRES_TEST_URL or "postgresql" not in (POSTGRES_TEST_URL or ""),
    reason="POSTGRES_TEST_URL (postgresql URL) not set",
)


@requires_postgres
def test_postgres_connect_and_query() -> None:
    """Minimal smoke test: connect to Postgres and run a query."""
    init_db(POSTGRES_TEST_URL, echo=False)
    with session_scope() as session:
        row = session.execute(text("SELECT 1 AS n")).first()
    assert row is not None
    assert row[0] == 1


@requires_postgres
def test_postgres_transition_round_trip() -> None:
    init_db(POSTGRES_TEST_URL, echo=False)
    engine = CaseStatusEngine()
    case = engine.submit_case(CLIENT, STUDY_ONLY_CASE)
    result = engine.request_transition(case.id, "study_in_progress", DESIGNER)
    assert result.case.version == 2
    assert [e.to_status for e in engine.get_history(case.id)] == ["submitted", "study_in_progress"]
