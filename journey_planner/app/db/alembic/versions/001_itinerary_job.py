"""Itinerary job table

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates itinerary_job: one row per submitted planning request, with
lease columns for worker claims and a version column for conditional writes.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create itinerary_job."""
    op.create_table(
        "itinerary_job",
        sa.Column("job_id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("request", postgresql.JSONB(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("lease_owner", sa.Text(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed')",
            name="ck_itinerary_job_status",
        ),
    )
    op.create_index("idx_itinerary_job_status", "itinerary_job", ["status"])
    op.create_index("idx_itinerary_job_expires", "itinerary_job", ["expires_at"])


def downgrade() -> None:
    """Drop itinerary_job."""
    op.drop_index("idx_itinerary_job_expires", table_name="itinerary_job")
    op.drop_index("idx_itinerary_job_status", table_name="itinerary_job")
    op.drop_table("itinerary_job")
