"""initial_schema

Revision ID: 5e0c1a7d2b41
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "5e0c1a7d2b41"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("case_number", sa.String(64), nullable=False),
        sa.Column("client_profile_id", sa.Integer(), nullable=False),
        sa.Column("designer_profile_id", sa.Integer(), nullable=True),
        sa.Column("procedure_category", sa.String(64), nullable=False),
        sa.Column("guide_type", sa.String(64), nullable=False),
        sa.Column("required_service", sa.String(32), nullable=False),
        sa.Column("patient_ref", sa.String(128), nullable=True),
        sa.Column("implant_system", sa.String(128), nullable=True),
        sa.Column("teeth_numbers", sa.JSON(), nullable=True),
        sa.Column("clinical_notes", sa.Text(), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("delivery_method", sa.String(16), nullable=True),
        sa.Column("delivery_address_id", sa.Integer(), nullable=True),
        sa.Column("pickup_branch_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(64), nullable=False, server_default="submitted"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cases_case_number", "cases", ["case_number"], unique=True)
    op.create_index("ix_cases_client_profile_id", "cases", ["client_profile_id"], unique=False)
    op.create_index("ix_cases_status", "cases", ["status"], unique=False)
    op.create_table(
        "case_status_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.String(64), nullable=True),
        sa.Column("to_status", sa.String(64), nullable=False),
        sa.Column("changed_by", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=True),
        sa.Column("entry_type", sa.String(16), nullable=False, server_default="transition"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("case_id", "seq", name="uq_history_case_seq"),
    )
    op.create_index(
        "ix_case_status_history_case_id", "case_status_history", ["case_id"], unique=False
    )
    op.create_index(
        "ix_case_status_history_correlation_id",
        "case_status_history",
        ["correlation_id"],
        unique=False,
    )
    op.create_table(
        "case_attachments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(64), nullable=True),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("uploaded_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_attachments_case_id", "case_attachments", ["case_id"], unique=False)
    op.create_table(
        "case_comments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("case_id", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("author_role", sa.String(16), nullable=False),
        sa.Column("author_id", sa.String(128), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["case_id"], ["cases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_comments_case_id", "case_comments", ["case_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_case_comments_case_id", "case_comments")
    op.drop_table("case_comments")
    op.drop_index("ix_case_attachments_case_id", "case_attachments")
    op.drop_table("case_attachments")
    op.drop_index("ix_case_status_history_correlation_id", "case_status_history")
    op.drop_index("ix_case_status_history_case_id", "case_status_history")
    op.drop_table("case_status_history")
    op.drop_index("ix_cases_status", "cases")
    op.drop_index("ix_cases_client_profile_id", "cases")
    op.drop_index("ix_cases_case_number", "cases")
    op.drop_table("cases")
