"""Entitlement schema: accounts, optimization history, promotion codes,
redemptions and the billing event log.

Revision ID: 001_entitlement_schema
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_entitlement_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("prompts_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_anchor", sa.DateTime(), nullable=False),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_customer_id", sa.String(), nullable=True),
        sa.Column("billing_subscription_id", sa.String(), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=False, server_default="inactive"),
        sa.Column("last_billing_event_id", sa.String(), nullable=True),
        sa.Column("last_billing_event_at", sa.BigInteger(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("prompts_used >= 0", name="ck_accounts_prompts_used_non_negative"),
    )
    op.create_index("ix_accounts_id", "accounts", ["id"])
    op.create_index("ix_accounts_username", "accounts", ["username"], unique=True)
    op.create_index("ix_accounts_billing_customer_id", "accounts", ["billing_customer_id"], unique=True)

    op.create_table(
        "optimization_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("input_text", sa.Text(), nullable=False),
        sa.Column("output_text", sa.Text(), nullable=False),
        sa.Column("audience", sa.String(), nullable=False, server_default="general"),
        sa.Column("focus_areas", sa.String(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_optimization_records_id", "optimization_records", ["id"])
    op.create_index("ix_optimization_records_account_id", "optimization_records", ["account_id"])

    op.create_table(
        "promotion_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("discount_percent BETWEEN 0 AND 100", name="ck_promotion_codes_discount_range"),
    )
    op.create_index("ix_promotion_codes_id", "promotion_codes", ["id"])
    op.create_index("ix_promotion_codes_code", "promotion_codes", ["code"], unique=True)

    op.create_table(
        "promotion_redemptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("promotion_code_id", sa.Integer(), sa.ForeignKey("promotion_codes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("account_id", "promotion_code_id", name="uq_redemption_account_code"),
    )
    op.create_index("ix_promotion_redemptions_id", "promotion_redemptions", ["id"])
    op.create_index("ix_promotion_redemptions_account_id", "promotion_redemptions", ["account_id"])

    op.create_table(
        "billing_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("sequence", sa.BigInteger(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_billing_events_id", "billing_events", ["id"])
    op.create_index("ix_billing_events_event_id", "billing_events", ["event_id"], unique=True)
    op.create_index("ix_billing_events_account_id", "billing_events", ["account_id"])


def downgrade() -> None:
    op.drop_table("billing_events")
    op.drop_table("promotion_redemptions")
    op.drop_table("promotion_codes")
    op.drop_table("optimization_records")
    op.drop_table("accounts")
