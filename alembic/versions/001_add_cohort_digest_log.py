"""Add cohort digest log table

Revision ID: 001_add_cohort_digest_log
Revises:
Create Date: 2025-10-06

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_add_cohort_digest_log"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "mdl_cohort_digest_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("manager_userid", sa.BigInteger(), nullable=False),
        sa.Column("manager_email", sa.String(255), nullable=False),
        sa.Column("courseid", sa.BigInteger(), nullable=False),
        sa.Column("since_days", sa.Integer(), nullable=False),
        sa.Column("years_back", sa.Integer(), nullable=False),
        sa.Column("recent_count", sa.Integer(), nullable=False),
        sa.Column("incomplete_count", sa.Integer(), nullable=False),
        sa.Column("cohorts_csv", sa.Text(), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("sent_ok", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status_label", sa.String(32), nullable=False),
        sa.Column("error_text", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_index("idx_manager", "mdl_cohort_digest_log", ["manager_userid", "sent_at"])
    op.create_index("idx_course", "mdl_cohort_digest_log", ["courseid", "sent_at"])


def downgrade() -> None:
    op.drop_index("idx_course", table_name="mdl_cohort_digest_log")
    op.drop_index("idx_manager", table_name="mdl_cohort_digest_log")
    op.drop_table("mdl_cohort_digest_log")
