"""Track worker claim time and failure classification.

Revision ID: 0002_add_worker_claim_and_error_type
Revises: 0001_initial
Create Date: 2026-09-20 16:45:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_add_worker_claim_and_error_type"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("check_runs") as batch_op:
        batch_op.add_column(sa.Column("started_at", sa.String(), nullable=True))
        batch_op.add_column(sa.Column("error_type", sa.String(), nullable=True))

    op.create_index(
        "idx_check_runs_status_created_at",
        "check_runs",
        ["status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_check_runs_status_created_at", table_name="check_runs")
    with op.batch_alter_table("check_runs") as batch_op:
        batch_op.drop_column("error_type")
        batch_op.drop_column("started_at")
