"""SQLAlchemy 2.x ORM models for surgical-guide cases."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for all models."""

    pass


class Case(Base):
    __tablename__ = "cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    client_profile_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    designer_profile_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    procedure_category: Mapped[str] = mapped_column(String(64), nullable=False)
    guide_type: Mapped[str] = mapped_column(String(64), nullable=False)
    required_service: Mapped[str] = mapped_column(String(32), nullable=False)
    patient_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    implant_system: Mapped[str | None] = mapped_column(String(128), nullable=True)
    teeth_numbers: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    clinical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_method: Mapped[str | None] = mapped_column(String(16), nullable=True)  # delivery/pickup
    delivery_address_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pickup_branch_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Written only by CaseStatusEngine together with a CaseStatusHistory row.
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="submitted", index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, onupdate=lambda: datetime.now(UTC)
    )

    history: Mapped[list[CaseStatusHistory]] = relationship(
        "CaseStatusHistory", back_populates="case", order_by="CaseStatusHistory.seq"
    )
    attachments: Mapped[list[CaseAttachment]] = relationship(
        "CaseAttachment", back_populates="case"
    )
    comments: Mapped[list[CaseComment]] = relationship("CaseComment", back_populates="case")

    __mapper_args__ = {"version_id_col": version}


class CaseStatusHistory(Base):
    """Append-only audit trail of status changes, hash-chained per case."""

    __tablename__ = "case_status_history"
    __table_args__ = (UniqueConstraint("case_id", "seq", name="uq_history_case_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_status: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(16), nullable=False)  # actor role
    actor_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False, default="transition")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    row_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    case: Mapped[Case] = relationship("Case", back_populates="history")


class CaseAttachment(Base):
    """Uploaded file metadata; storage and validation live elsewhere."""

    __tablename__ = "case_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    uploaded_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))

    case: Mapped[Case] = relationship("Case", back_populates="attachments")


class CaseComment(Base):
    __tablename__ = "case_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("cases.id"), nullable=False, index=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    author_role: Mapped[str] = mapped_column(String(16), nullable=False)
    author_id: Mapped[str] = mapped_column(String(128), nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))

    case: Mapped[Case] = relationship("Case", back_populates="comments")
