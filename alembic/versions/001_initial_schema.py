"""Initial schema: jobs, workers, reviews

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "jobs" in existing_tables:
        return

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("model_id", sa.Text, nullable=False),
        sa.Column("prompt", sa.Text, nullable=False, server_default=""),
        sa.Column("system_prompt", sa.Text),
        sa.Column("parameters", sa.JSON, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("requester", sa.Text, nullable=False),
        sa.Column("assigned_worker", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("input_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("output_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("output", sa.Text, nullable=False, server_default=""),
        sa.Column("estimated_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("actual_cost", sa.Float),
        sa.Column("error", sa.Text),
    )
    op.create_index("idx_jobs_status", "jobs", ["status"])
    op.create_index("idx_jobs_requester", "jobs", ["requester"])
    op.create_index("idx_jobs_assigned_worker", "jobs", ["assigned_worker"])

    # Create workers table
    op.create_table(
        "workers",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("address", sa.Text, nullable=False, unique=True),
        sa.Column("name", sa.Text, nullable=False, server_default=""),
        sa.Column("status", sa.Text, nullable=False, server_default="online"),
        sa.Column("hardware", sa.JSON, nullable=False),
        sa.Column("supported_models", sa.JSON, nullable=False),
        sa.Column("stake", sa.Float, nullable=False, server_default="0"),
        sa.Column("jobs_completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Float, nullable=False, server_default="0"),
        sa.Column("avg_response_time", sa.Float, nullable=False, server_default="0"),
        sa.Column("reputation", sa.Float, nullable=False, server_default="0"),
        sa.Column("current_job_id", sa.Text),
        sa.Column("registered_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Create reviews table
    op.create_table(
        "reviews",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("job_id", sa.Text, sa.ForeignKey("jobs.id"), nullable=False, unique=True),
        sa.Column("worker_id", sa.Text, nullable=False),
        sa.Column("requester_id", sa.Text, nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=False, server_default=""),
        sa.Column("response_time", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_reviews_worker_id", "reviews", ["worker_id"])


def downgrade() -> None:
    op.drop_table("reviews")
    op.drop_table("workers")
    op.drop_table("jobs")
