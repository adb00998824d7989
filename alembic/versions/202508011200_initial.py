"""cards, purchases, subscriptions and user settings

Revision ID: 202508011200
Revises:
Create Date: 2025-08-01 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202508011200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("bank_name", sa.String(length=100), nullable=False),
        sa.Column("logo_url", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "cancelled", name="subscriptionstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("cancelled_at", sa.String(length=7)),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("value > 0", name="ck_subscription_value_positive"),
    )
    op.create_index(
        "ix_subscriptions_user_status", "subscriptions", ["user_id", "status"]
    )

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("card_id", sa.Integer(), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("total_value", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "total_installments", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("invoice_month", sa.String(length=7), nullable=False),
        sa.Column(
            "subscription_id", sa.Integer(), sa.ForeignKey("subscriptions.id")
        ),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "subscription_id", "purchase_date", name="uq_purchase_subscription_date"
        ),
        sa.CheckConstraint("total_value > 0", name="ck_purchase_value_positive"),
        sa.CheckConstraint(
            "total_installments BETWEEN 1 AND 99",
            name="ck_purchase_installments_range",
        ),
    )
    op.create_index(
        "ix_purchases_user_invoice_month", "purchases", ["user_id", "invoice_month"]
    )
    op.create_index("ix_purchases_card", "purchases", ["card_id"])

    op.create_table(
        "user_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value_json", sa.Text(), nullable=False, server_default="null"),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("user_id", "key", name="uq_user_setting_key"),
    )


def downgrade():
    op.drop_table("user_settings")
    op.drop_index("ix_purchases_card", table_name="purchases")
    op.drop_index("ix_purchases_user_invoice_month", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_subscriptions_user_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("cards")
