"""Tests for the status history hash chain and append-only guards."""

from __future__ import annotations

import pytest
from helpers import ADMIN, CLIENT, DESIGNER, STUDY_ONLY_CASE
from sqlalchemy import select, text

from guide_orders.db import AppendOnlyViolation, get_engine, session_scope
from guide_orders.history import check_status_consistency, verify_history_chain
from guide_orders.models import Case, CaseStatusHistory


def _chain(case_id: int) -> list[tuple[int, str | None, str]]:
    with session_scope() as session:
        return [
            tuple(r)
            for r in session.execute(
                select(CaseStatusHistory.seq, CaseStatusHistory.prev_hash, CaseStatusHistory.row_hash)
                .where(CaseStatusHistory.case_id == case_id)
                .order_by(CaseStatusHistory.seq)
            ).all()
        ]


def test_history_rows_are_hash_chained(engine, submitted_case) -> None:
    engine.request_transition(submitted_case, "study_in_progress", DESIGNER)
    engine.override_status(submitted_case, "quote_sent", ADMIN, "quoted by phone")
    chain = _chain(submitted_case)
    assert [seq for seq, _, _ in chain] == [1, 2, 3]
    assert chain[0][1] is None
    assert all(len(h) == 64 for _, _, h in chain)
    assert chain[1][1] == chain[0][2]
    assert chain[2][1] == chain[1][2]
    with session_scope() as session:
        assert verify_history_chain(session, submitted_case) == []
        assert check_status_consistency(session) == []


def test_chains_are_per_case(engine) -> None:
    first = engine.submit_case(CLIENT, STUDY_ONLY_CASE).id
    second = engine.submit_case(CLIENT, STUDY_ONLY_CASE).id
    engine.request_transition(first, "cancelled", CLIENT)
    assert _chain(second)[0][1] is None
    assert _chain(first)[1][1] == _chain(first)[0][2]


def test_tampered_entry_is_detected(engine, submitted_case) -> None:
    engine.request_transition(submitted_case, "study_in_progress", DESIGNER)
    engine.request_transition(submitted_case, "study_completed", DESIGNER)
    with get_engine().begin() as conn:
        conn.execute(
            text("UPDATE case_status_history SET notes = 'edited' WHERE case_id = :c AND seq = 2"),
            {"c": submitted_case},
        )
    with session_scope() as session:
        problems = verify_history_chain(session, submitted_case)
    assert [(p.seq, p.problem) for p in problems] == [(2, "row_hash mismatch (entry altered)")]


def test_direct_status_edit_is_detected(engine, submitted_case) -> None:
    with get_engine().begin() as conn:
        conn.execute(
            text("UPDATE cases SET status = 'in_production' WHERE id = :c"), {"c": submitted_case}
        )
    with session_scope() as session:
        problems = check_status_consistency(session, submitted_case)
    assert len(problems) == 1
    assert "in_production" in problems[0].problem


def test_case_without_history_is_reported(db_url) -> None:
    with session_scope() as session:
        case = Case(
            case_number="CASE-orphan",
            client_profile_id=1,
            procedure_category="gbr",
            guide_type="bone_support",
            required_service="study_only",
        )
        session.add(case)
        session.flush()
        case_id = case.id
    with session_scope() as session:
        problems = check_status_consistency(session)
    assert [(p.case_id, p.problem) for p in problems] == [(case_id, "case has no history")]


def test_history_update_is_rejected(engine, submitted_case) -> None:
    with pytest.raises(AppendOnlyViolation):
        with session_scope() as session:
            entry = session.execute(
                select(CaseStatusHistory).where(CaseStatusHistory.case_id == submitted_case)
            ).scalar_one()
            entry.notes = "rewritten"
    assert engine.get_history(submitted_case)[0].notes == "Case submitted by client"


def test_history_delete_is_rejected(engine, submitted_case) -> None:
    with pytest.raises(AppendOnlyViolation):
        with session_scope() as session:
            entry = session.execute(
                select(CaseStatusHistory).where(CaseStatusHistory.case_id == submitted_case)
            ).scalar_one()
            session.delete(entry)
    assert len(engine.get_history(submitted_case)) == 1


def test_case_delete_is_rejected(engine, submitted_case) -> None:
    with pytest.raises(AppendOnlyViolation):
        with session_scope() as session:
            session.delete(session.get(Case, submitted_case))
    assert engine.get_case(submitted_case).status == "submitted"


def test_orm_status_change_without_history_is_rejected(engine, submitted_case) -> None:
    with pytest.raises(AppendOnlyViolation, match="history entry"):
        with session_scope() as session:
            session.get(Case, submitted_case).status = "delivered"
    assert engine.get_case(submitted_case).status == "submitted"
    assert len(engine.get_history(submitted_case)) == 1
    engine.request_transition(submitted_case, "study_in_progress", DESIGNER)
    with session_scope() as session:
        assert check_status_consistency(session, submitted_case) == []


def test_orm_status_change_needs_matching_history_row(engine, submitted_case) -> None:
    with pytest.raises(AppendOnlyViolation):
        with session_scope() as session:
            case = session.get(Case, submitted_case)
            case.status = "delivered"
            session.add(
                CaseStatusHistory(
                    case_id=submitted_case,
                    seq=2,
                    from_status="submitted",
                    to_status="study_in_progress",
                    changed_by="admin",
                )
            )
    assert engine.get_case(submitted_case).status == "submitted"


def test_orm_update_of_other_fields_is_allowed(engine, submitted_case) -> None:
    with session_scope() as session:
        session.get(Case, submitted_case).designer_profile_id = 10
    case = engine.get_case(submitted_case)
    assert case.designer_profile_id == 10
    assert case.status == "submitted"
