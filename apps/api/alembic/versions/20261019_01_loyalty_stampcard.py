"""Loyalty stamp card ledgers and supporting read models.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


stamp_status = sa.Enum("active", "expired", "used_in_reward", name="loyalty_stamp_status")
reward_status = sa.Enum("generated", "active", "in_use", "redeemed", "expired", name="loyalty_reward_status")
notification_category = sa.Enum("loyalty_reward_generated", name="notification_category_enum")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "loyalty_configs",
        sa.Column("franchise_id", sa.String(length=64), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stamps_required", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("eligible_services", sa.JSON(), nullable=False),
        sa.Column("stamp_expiration", sa.JSON(), nullable=False),
        sa.Column("reward_expiration", sa.JSON(), nullable=False),
        sa.Column("notifications", sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "loyalty_stamps",
        sa.Column("stamp_id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("service_id", sa.String(length=64), nullable=True),
        sa.Column("barber_id", sa.String(length=64), nullable=True),
        sa.Column("status", stamp_status, nullable=False, server_default="active"),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_queue_id", sa.String(length=64), nullable=False),
        sa.Column("reward_id", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False, server_default="system"),
        sa.Column("created_method", sa.String(length=16), nullable=False, server_default="automatic"),
        *_timestamps(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("source_queue_id", name="uq_loyalty_stamps_source_queue_id"),
    )
    op.create_index(
        "ix_loyalty_stamps_user_franchise_status",
        "loyalty_stamps",
        ["user_id", "franchise_id", "status"],
    )
    op.create_index("ix_loyalty_stamps_status_expires_at", "loyalty_stamps", ["status", "expires_at"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("reward_id", sa.String(length=64), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("service_id", sa.String(length=64), nullable=True),
        sa.Column("reward_type", sa.String(length=32), nullable=False, server_default="free_service"),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", reward_status, nullable=False, server_default="generated"),
        sa.Column("generated_from_stamps", sa.JSON(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_use_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_use_by", sa.String(length=128), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_by", sa.String(length=128), nullable=True),
        sa.Column("redeemed_at_branch", sa.String(length=64), nullable=True),
        sa.Column("queue_id", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("code", name="uq_loyalty_rewards_code"),
    )
    op.create_index("ix_loyalty_rewards_user_franchise", "loyalty_rewards", ["user_id", "franchise_id"])
    op.create_index("ix_loyalty_rewards_status_expires_at", "loyalty_rewards", ["status", "expires_at"])

    op.create_table(
        "loyalty_customer_summaries",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("active_stamps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_stamps_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rewards_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rewards_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rewards_expired", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamps_required", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("active_reward_ids", sa.JSON(), nullable=False),
        sa.Column("last_stamp_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_reward_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "franchise_id", name="uq_loyalty_customer_summaries_user_franchise"),
    )
    op.create_index("ix_loyalty_customer_summaries_user_id", "loyalty_customer_summaries", ["user_id"])

    op.create_table(
        "salon_services",
        sa.Column("service_id", sa.String(length=64), primary_key=True),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_salon_services_franchise_id", "salon_services", ["franchise_id"])

    op.create_table(
        "barbers",
        sa.Column("barber_id", sa.String(length=128), primary_key=True),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_barbers_branch_id", "barbers", ["branch_id"])

    op.create_table(
        "queue_tickets",
        sa.Column("queue_id", sa.String(length=64), primary_key=True),
        sa.Column("franchise_id", sa.String(length=64), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("service_id", sa.String(length=64), nullable=True),
        sa.Column("barber_id", sa.String(length=128), nullable=True),
        sa.Column("loyalty_reward", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_queue_tickets_user_id", "queue_tickets", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("category", notification_category, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_queue_tickets_user_id", table_name="queue_tickets")
    op.drop_table("queue_tickets")
    op.drop_index("ix_barbers_branch_id", table_name="barbers")
    op.drop_table("barbers")
    op.drop_index("ix_salon_services_franchise_id", table_name="salon_services")
    op.drop_table("salon_services")
    op.drop_index("ix_loyalty_customer_summaries_user_id", table_name="loyalty_customer_summaries")
    op.drop_table("loyalty_customer_summaries")
    op.drop_index("ix_loyalty_rewards_status_expires_at", table_name="loyalty_rewards")
    op.drop_index("ix_loyalty_rewards_user_franchise", table_name="loyalty_rewards")
    op.drop_table("loyalty_rewards")
    op.drop_index("ix_loyalty_stamps_status_expires_at", table_name="loyalty_stamps")
    op.drop_index("ix_loyalty_stamps_user_franchise_status", table_name="loyalty_stamps")
    op.drop_table("loyalty_stamps")
    op.drop_table("loyalty_configs")

    bind = op.get_bind()
    notification_category.drop(bind, checkfirst=True)
    reward_status.drop(bind, checkfirst=True)
    stamp_status.drop(bind, checkfirst=True)
