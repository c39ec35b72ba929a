"""Job ownership and session exam horizon

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-26

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Learner a job was enqueued for; NULL for system jobs
    op.add_column("background_jobs", sa.Column("user_id", sa.Uuid(), nullable=True))
    op.create_index("ix_background_jobs_user_id", "background_jobs", ["user_id"])

    op.add_column("study_sessions", sa.Column("exam_date", sa.Date(), nullable=True))


def downgrade() -> None:
    op.drop_column("study_sessions", "exam_date")
    op.drop_index("ix_background_jobs_user_id", table_name="background_jobs")
    op.drop_column("background_jobs", "user_id")
