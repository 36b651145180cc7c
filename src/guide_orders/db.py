"""SQLAlchemy 2.x engine and session (SQLite and Postgres)."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from logging import getLogger
from pathlib import Path

from sqlalchemy import create_engine, event, inspect, select, text
from sqlalchemy.orm import Session, sessionmaker

from guide_orders.models import Base, Case, CaseStatusHistory

logger = getLogger(__name__)

# Module-level engine/session_factory; set via init_db()
_engine = None
_SessionLocal: sessionmaker[Session] | None = None

_SCHEMA_COLUMNS = (
    (
        "cases",
        [
            ("version", "INTEGER NOT NULL DEFAULT 1"),
            ("completed_at", "DATETIME"),
            ("cancelled_at", "DATETIME"),
        ],
    ),
    (
        "case_status_history",
        [
            ("entry_type", "TEXT NOT NULL DEFAULT 'transition'"),
            ("correlation_id", "TEXT"),
            ("prev_hash", "TEXT"),
            ("row_hash", "TEXT"),
        ],
    ),
)


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to rewrite audit history or delete a case."""


def _get_existing_columns(conn, table: str) -> set[str]:
    """Return set of column names for table (SQLite pragma_table_info)."""
    r = conn.execute(text(f"PRAGMA table_info({table})"))
    return {row[1] for row in r.fetchall()}


def _missing_columns(engine) -> list[tuple[str, str]]:
    """Return list of (table, column) that are expected but missing."""
    missing: list[tuple[str, str]] = []
    with engine.connect() as conn:
        for table, columns in _SCHEMA_COLUMNS:
            existing = _get_existing_columns(conn, table)
            for col_name, _ in columns:
                if col_name not in existing:
                    missing.append((table, col_name))
    return missing


def history_row_canonical(row: CaseStatusHistory) -> str:
    """Canonical string for hashing (excludes id, prev_hash, row_hash)."""
    # Naive UTC: SQLite and timezone-less Postgres columns drop tzinfo on round-trip.
    ts_str = row.created_at.replace(tzinfo=None).isoformat() if row.created_at else ""
    payload = {
        "case_id": row.case_id,
        "seq": row.seq,
        "from_status": row.from_status,
        "to_status": row.to_status,
        "changed_by": row.changed_by,
        "actor_id": row.actor_id,
        "entry_type": row.entry_type,
        "notes": row.notes,
        "created_at": ts_str,
    }
    return json.dumps(payload, sort_keys=True)


def compute_row_hash(prev_hash: str | None, row: CaseStatusHistory) -> str:
    return hashlib.sha256(((prev_hash or "") + history_row_canonical(row)).encode()).hexdigest()


def _compute_history_chain(session: Session) -> None:
    """Set prev_hash and row_hash on new history rows, chained per case (tamper evidence)."""
    new_rows = sorted(
        (o for o in session.new if isinstance(o, CaseStatusHistory)),
        key=lambda r: (r.case_id or 0, r.seq or 0),
    )
    if not new_rows:
        return
    last_hash: dict[int, str | None] = {}
    for row in new_rows:
        if row.case_id is None:
            # Linked via relationship only; flush the case first to obtain its id.
            raise RuntimeError("CaseStatusHistory.case_id must be set before flush")
        if row.created_at is None:
            row.created_at = datetime.now(UTC)
        if row.case_id not in last_hash:
            stmt = (
                select(CaseStatusHistory.row_hash)
                .where(CaseStatusHistory.case_id == row.case_id)
                .order_by(CaseStatusHistory.seq.desc())
                .limit(1)
            )
            last_hash[row.case_id] = session.execute(stmt).scalar_one_or_none()
        row.prev_hash = last_hash[row.case_id]
        row.row_hash = compute_row_hash(row.prev_hash, row)
        last_hash[row.case_id] = row.row_hash


def _check_status_changes(session: Session) -> None:
    """Reject a case status write that is not paired with a history row in the same flush."""
    recorded = {
        (o.case_id, o.to_status) for o in session.new if isinstance(o, CaseStatusHistory)
    }
    for obj in session.dirty:
        if not isinstance(obj, Case):
            continue
        hist = inspect(obj).attrs.status.history
        if not hist.has_changes() or (hist.deleted and hist.deleted[0] == obj.status):
            continue
        if (obj.id, obj.status) not in recorded:
            raise AppendOnlyViolation(
                f"Case {obj.id} status can only change with a history entry"
            )


@event.listens_for(Session, "before_flush")
def _before_flush_history_chain(session, flush_context, instances):
    _check_status_changes(session)
    _compute_history_chain(session)


@event.listens_for(CaseStatusHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Status history entry {target.id} is append-only")


@event.listens_for(CaseStatusHistory, "before_delete")
def _reject_history_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Status history entry {target.id} cannot be deleted")


@event.listens_for(Case, "before_delete")
def _reject_case_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Case {target.id} cannot be deleted; cancel it instead")


def _upgrade_schema(engine) -> list[tuple[str, str]]:
    """Add workflow columns if missing (SQLite). Returns list of (table, column) added."""
    added: list[tuple[str, str]] = []
    with engine.connect() as conn:
        for table, columns in _SCHEMA_COLUMNS:
            existing = _get_existing_columns(conn, table)
            for col_name, col_type in columns:
                if col_name in existing:
                    continue
                try:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}"))
                    conn.commit()
                    added.append((table, col_name))
                except Exception:
                    logger.exception("Failed to add column %s.%s", table, col_name)
                    conn.rollback()
    if added:
        logger.warning(
            "Schema auto-upgrade ran (GUIDE_ALLOW_SCHEMA_UPGRADE=true). Columns added: %s", added
        )
    return added


def init_db(database_url: str, echo: bool = False, lock_timeout_seconds: float = 5.0) -> None:
    """Create engine and session factory. Call once at startup.
    SQLite: create_all + optional schema upgrade gating. Postgres: engine only (schema via Alembic).
    """
    global _engine, _SessionLocal
    is_sqlite = "sqlite" in database_url
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        Path(database_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    connect_args = (
        {} if not is_sqlite else {"check_same_thread": False, "timeout": lock_timeout_seconds}
    )
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
    )
    _SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=_engine
    )

    if is_sqlite:
        Base.metadata.create_all(bind=_engine)
        allow_upgrade = os.environ.get("GUIDE_ALLOW_SCHEMA_UPGRADE", "").strip().lower() == "true"
        if allow_upgrade:
            _upgrade_schema(_engine)
        else:
            missing = _missing_columns(_engine)
            if missing:
                raise RuntimeError(
                    "Schema mismatch detected. Set GUIDE_ALLOW_SCHEMA_UPGRADE=true for local dev OR run migrations."
                )
    # Postgres: schema is applied via Alembic; do not create_all here


def get_engine():
    """Return the global engine. Raises if init_db() was not called."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for a block."""
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
