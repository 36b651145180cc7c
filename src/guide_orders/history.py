"""Audit checks over the status history: hash chain integrity and status/history agreement."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guide_orders.db import compute_row_hash
from guide_orders.models import Case, CaseStatusHistory


@dataclass(frozen=True)
class HistoryProblem:
    case_id: int
    seq: int | None
    problem: str


def verify_history_chain(session: Session, case_id: int) -> list[HistoryProblem]:
    """Recompute the per-case hash chain; return one problem per broken link (empty if intact)."""
    rows = (
        session.execute(
            select(CaseStatusHistory)
            .where(CaseStatusHistory.case_id == case_id)
            .order_by(CaseStatusHistory.seq)
        )
        .scalars()
        .all()
    )
    problems: list[HistoryProblem] = []
    prev_hash: str | None = None
    prev_to: str | None = None
    for expected_seq, row in enumerate(rows, start=1):
        if row.seq != expected_seq:
            problems.append(HistoryProblem(case_id, row.seq, f"gap: expected seq {expected_seq}"))
        if row.prev_hash != prev_hash:
            problems.append(HistoryProblem(case_id, row.seq, "prev_hash does not link to previous entry"))
        if row.row_hash != compute_row_hash(row.prev_hash, row):
            problems.append(HistoryProblem(case_id, row.seq, "row_hash mismatch (entry altered)"))
        if expected_seq > 1 and row.from_status != prev_to:
            problems.append(HistoryProblem(case_id, row.seq, "from_status does not follow previous entry"))
        prev_hash = row.row_hash
        prev_to = row.to_status
    return problems


def check_status_consistency(session: Session, case_id: int | None = None) -> list[HistoryProblem]:
    """Return cases whose current status differs from the to_status of their latest entry."""
    latest_seq = (
        select(CaseStatusHistory.case_id, func.max(CaseStatusHistory.seq).label("seq"))
        .group_by(CaseStatusHistory.case_id)
        .subquery()
    )
    stmt = (
        select(Case.id, Case.status, CaseStatusHistory.to_status, CaseStatusHistory.seq)
        .outerjoin(latest_seq, latest_seq.c.case_id == Case.id)
        .outerjoin(
            CaseStatusHistory,
            (CaseStatusHistory.case_id == Case.id) & (CaseStatusHistory.seq == latest_seq.c.seq),
        )
        .order_by(Case.id)
    )
    if case_id is not None:
        stmt = stmt.where(Case.id == case_id)
    problems: list[HistoryProblem] = []
    for cid, status, to_status, seq in session.execute(stmt).all():
        if to_status is None:
            problems.append(HistoryProblem(cid, None, "case has no history"))
        elif status != to_status:
            problems.append(
                HistoryProblem(cid, seq, f"status {status} != latest history to_status {to_status}")
            )
    return problems
