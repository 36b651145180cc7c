"""history_hash_chain

Revision ID: 8a4f2e9c6d13
Revises: 5e0c1a7d2b41
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "8a4f2e9c6d13"
down_revision: str | Sequence[str] | None = "5e0c1a7d2b41"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("case_status_history", sa.Column("prev_hash", sa.String(64), nullable=True))
    op.add_column("case_status_history", sa.Column("row_hash", sa.String(64), nullable=True))


def downgrade() -> None:
    op.drop_column("case_status_history", "row_hash")
    op.drop_column("case_status_history", "prev_hash")
