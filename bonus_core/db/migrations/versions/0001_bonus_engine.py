"""bonus engine

Revision ID: 0001_bonus_engine
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_bonus_engine"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _deal_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("number", sa.String(length=64), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("agent_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("curator_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("referral_key", sa.String(length=64), nullable=True),
        sa.Column("referred_by_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_referral_key", "users", ["referral_key"], unique=True)
    op.create_index("ix_users_referred_by_key", "users", ["referred_by_key"], unique=False)

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "project_user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(length=16), server_default="agent", nullable=False),
    )
    op.create_index("ix_project_user_project_id", "project_user", ["project_id"], unique=False)
    op.create_index("ix_project_user_user_id", "project_user", ["user_id"], unique=False)

    op.create_table(
        "contracts",
        *_deal_columns(),
        sa.Column("partner_payment_status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("partner_payment_date", sa.Date(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_contracts_project_id", "contracts", ["project_id"], unique=False)

    op.create_table(
        "orders",
        *_deal_columns(),
        *_timestamps(),
    )
    op.create_index("ix_orders_project_id", "orders", ["project_id"], unique=False)

    op.create_table(
        "bonuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("contract_id", sa.Integer(), sa.ForeignKey("contracts.id"), nullable=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("recipient_type", sa.String(length=16), nullable=False),
        sa.Column("referral_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("accrued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("(contract_id IS NULL) <> (order_id IS NULL)", name="ck_bonuses_single_source"),
        sa.CheckConstraint("commission_amount >= 0", name="ck_bonuses_amount_non_negative"),
    )
    op.create_index("ix_bonuses_user_id", "bonuses", ["user_id"], unique=False)
    op.create_index("ix_bonuses_contract_id", "bonuses", ["contract_id"], unique=False)
    op.create_index("ix_bonuses_order_id", "bonuses", ["order_id"], unique=False)
    op.create_index("ix_bonuses_referral_user_id", "bonuses", ["referral_user_id"], unique=False)
    op.create_index("ix_bonuses_user_id_accrued_at", "bonuses", ["user_id", "accrued_at"], unique=False)

    op.create_table(
        "bonus_payment_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("card_number", sa.String(length=32), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("contact_info", sa.Text(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="requested", nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bonus_payment_requests_user_id", "bonus_payment_requests", ["user_id"], unique=False)

    op.create_table(
        "bonus_payment_request_bonuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "payment_request_id",
            sa.Integer(),
            sa.ForeignKey("bonus_payment_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bonus_id", sa.Integer(), sa.ForeignKey("bonuses.id"), nullable=False),
        sa.Column("covered_amount", sa.Numeric(12, 2), nullable=False),
    )
    op.create_index(
        "ix_bonus_payment_request_bonuses_payment_request_id",
        "bonus_payment_request_bonuses",
        ["payment_request_id"],
        unique=False,
    )
    op.create_index(
        "ix_bonus_payment_request_bonuses_bonus_id", "bonus_payment_request_bonuses", ["bonus_id"], unique=False
    )


def downgrade() -> None:
    op.drop_table("bonus_payment_request_bonuses")
    op.drop_table("bonus_payment_requests")
    op.drop_table("bonuses")
    op.drop_table("orders")
    op.drop_table("contracts")
    op.drop_table("project_user")
    op.drop_table("projects")
    op.drop_table("users")
