"""Initial check run store schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-02 10:20:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "check_runs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("repository_id", sa.String(), nullable=False),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("repo", sa.String(), nullable=False),
        sa.Column("branch_name", sa.String(), nullable=True),
        sa.Column("check_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("issues_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("completed_at", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "idx_check_runs_status_completed_at",
        "check_runs",
        ["status", "completed_at"],
        unique=False,
    )
    op.create_index(
        "idx_check_runs_owner_repo_created_at",
        "check_runs",
        ["owner", "repo", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_check_runs_owner_repo_created_at", table_name="check_runs")
    op.drop_index("idx_check_runs_status_completed_at", table_name="check_runs")
    op.drop_table("check_runs")
