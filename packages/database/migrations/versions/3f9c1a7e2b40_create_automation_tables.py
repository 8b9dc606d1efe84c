"""Create automation tables

Revision ID: 3f9c1a7e2b40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f9c1a7e2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create automations, reviews, members and the delivery ledger."""
    op.create_table(
        "automations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("trigger_type", sa.String(length=50), nullable=False),
        sa.Column("trigger_conditions", sa.JSON(), nullable=True),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("action_config", sa.JSON(), nullable=True),
        sa.Column("last_triggered_at", sa.DateTime(), nullable=True),
        sa.Column("trigger_count", sa.Integer(), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automations_tenant_active", "automations", ["tenant_id", "is_active"])
    op.create_index("ix_automations_trigger_type", "automations", ["trigger_type"])

    op.create_table(
        "reviews",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("sentiment", sa.String(length=20), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("author_name", sa.String(length=200), nullable=True),
        sa.Column("needs_action", sa.Boolean(), nullable=False),
        sa.Column("replied_at", sa.DateTime(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("assigned_to", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reviews_tenant_id", "reviews", ["tenant_id"])
    op.create_index(
        "ix_reviews_unreplied",
        "reviews",
        ["tenant_id", "needs_action", "replied_at", "created_at"],
    )

    op.create_table(
        "tenant_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members"),
    )

    op.create_table(
        "delivery_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("automation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("review_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_kind", sa.String(length=30), nullable=False),
        sa.Column("event_version", sa.String(length=64), nullable=False),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["automation_id"], ["automations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    # At most one success per fingerprint
    op.create_index(
        "uq_delivery_records_success_fingerprint",
        "delivery_records",
        ["fingerprint"],
        unique=True,
        postgresql_where=sa.text("outcome = 'success'"),
        sqlite_where=sa.text("outcome = 'success'"),
    )
    op.create_index("ix_delivery_records_fingerprint", "delivery_records", ["fingerprint"])
    op.create_index(
        "ix_delivery_records_automation", "delivery_records", ["automation_id", "attempted_at"]
    )
    op.create_index(
        "ix_delivery_records_outcome_time", "delivery_records", ["outcome", "attempted_at"]
    )

    op.create_table(
        "delivery_claims",
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("automation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("fingerprint"),
    )
    op.create_index("ix_delivery_claims_expires_at", "delivery_claims", ["expires_at"])


def downgrade() -> None:
    """Drop automation tables."""
    op.drop_index("ix_delivery_claims_expires_at", table_name="delivery_claims")
    op.drop_table("delivery_claims")

    op.drop_index("ix_delivery_records_outcome_time", table_name="delivery_records")
    op.drop_index("ix_delivery_records_automation", table_name="delivery_records")
    op.drop_index("ix_delivery_records_fingerprint", table_name="delivery_records")
    op.drop_index("uq_delivery_records_success_fingerprint", table_name="delivery_records")
    op.drop_table("delivery_records")

    op.drop_table("tenant_members")

    op.drop_index("ix_reviews_unreplied", table_name="reviews")
    op.drop_index("ix_reviews_tenant_id", table_name="reviews")
    op.drop_table("reviews")

    op.drop_index("ix_automations_trigger_type", table_name="automations")
    op.drop_index("ix_automations_tenant_active", table_name="automations")
    op.drop_table("automations")
