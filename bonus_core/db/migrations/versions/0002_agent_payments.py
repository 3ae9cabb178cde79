"""agent payments

Revision ID: 0002_agent_payments
Revises: 0001_bonus_engine
Create Date: 2026-10-20

"""

from alembic import op
import sqlalchemy as sa


revision = "0002_agent_payments"
down_revision = "0001_bonus_engine"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agent_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("reference_number", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_agent_payments_agent_id", "agent_payments", ["agent_id"], unique=False)

    op.create_table(
        "agent_payment_bonuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "payment_id", sa.Integer(), sa.ForeignKey("agent_payments.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("bonus_id", sa.Integer(), sa.ForeignKey("bonuses.id"), nullable=False),
        sa.UniqueConstraint("payment_id", "bonus_id", name="uq_agent_payment_bonuses_payment_bonus"),
    )
    op.create_index("ix_agent_payment_bonuses_payment_id", "agent_payment_bonuses", ["payment_id"], unique=False)
    op.create_index("ix_agent_payment_bonuses_bonus_id", "agent_payment_bonuses", ["bonus_id"], unique=False)


def downgrade() -> None:
    op.drop_table("agent_payment_bonuses")
    op.drop_table("agent_payments")
