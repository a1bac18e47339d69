"""Initial schema: users, groups, bills, loans, recurring templates, predictions.

Money columns are BIGINT minor units, quantities BIGINT thousandths and
percentages BIGINT ten-thousandths (see expense_engine.models.types).
Enum columns store the enum member names.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


SUBJECT_TYPE = sa.Enum("USER", "GROUP", name="subjecttype")


def upgrade() -> None:
    # Create groups table
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "weight",
            sa.BigInteger(),
            nullable=False,
            server_default="1000",
            comment="Default allocation weight (1.0 unless configured)",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, comment="Display name - unique identifier"),
        sa.Column("group_id", sa.Integer(), nullable=True, comment="Household group this user belongs to"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.Index("ix_users_group_id", "group_id"),
        sa.Index("idx_user_active", "is_active"),
    )

    # Create recurring_bill_templates table
    op.create_table(
        "recurring_bill_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("custom_type", sa.String(length=255), nullable=False),
        sa.Column("frequency", sa.Enum("MONTHLY", "QUARTERLY", "YEARLY", name="frequency"), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("last_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_recurring_bill_templates_next_due_date", "next_due_date"),
        sa.Index("idx_template_active_due", "is_active", "next_due_date"),
    )

    # Create template_allocations table
    op.create_table(
        "template_allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subject_type", SUBJECT_TYPE, nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column(
            "allocation_type",
            sa.Enum("FIXED", "PERCENTAGE", "FRACTION", name="templateallocationtype"),
            nullable=False,
        ),
        sa.Column("fixed_amount", sa.BigInteger(), nullable=True),
        sa.Column("percentage", sa.BigInteger(), nullable=True, comment="Share in percent (0, 100]"),
        sa.Column("fraction_num", sa.Integer(), nullable=True),
        sa.Column("fraction_denom", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["recurring_bill_templates.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_template_allocations_template_id", "template_id"),
    )

    # Create bills table
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "bill_type",
            sa.Enum("ELECTRICITY", "GAS", "INTERNET", "SHARED", "OTHER", name="billtype"),
            nullable=False,
        ),
        sa.Column("custom_type", sa.String(length=255), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False, comment="Bill total in minor units"),
        sa.Column("total_units", sa.BigInteger(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("DRAFT", "POSTED", "CLOSED", name="billstatus"),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("payment_deadline", sa.Date(), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("recurring_template_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["recurring_template_id"], ["recurring_bill_templates.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_bills_bill_type", "bill_type"),
        sa.Index("ix_bills_recurring_template_id", "recurring_template_id"),
        sa.Index("idx_bill_type_status", "bill_type", "status"),
        sa.Index("idx_bill_period", "period_start", "period_end"),
    )

    # Create consumptions table
    op.create_table(
        "consumptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("units", sa.BigInteger(), nullable=False),
        sa.Column("meter_value", sa.BigInteger(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.Enum("USER", "ADMIN", name="consumptionsource"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_consumptions_bill_id", "bill_id"),
        sa.Index("ix_consumptions_user_id", "user_id"),
        sa.Index("idx_consumption_bill_user", "bill_id", "user_id"),
    )

    # Create allocations table
    op.create_table(
        "allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("subject_type", SUBJECT_TYPE, nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("units", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "method",
            sa.Enum(
                "PROPORTIONAL", "EQUAL", "WEIGHT", "OVERRIDE", "TEMPLATE", name="allocationmethod"
            ),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_allocations_bill_id", "bill_id"),
        sa.Index("idx_allocation_subject", "subject_type", "subject_id"),
    )

    # Create loans table
    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lender_id", sa.Integer(), nullable=False),
        sa.Column("borrower_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("amount_paid", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("OPEN", "PARTIAL", "SETTLED", name="loanstatus"),
            nullable=False,
            server_default="OPEN",
        ),
        sa.Column("note", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("lender_id != borrower_id", name="ck_loan_distinct_parties"),
        sa.CheckConstraint("amount > 0", name="ck_loan_positive_amount"),
        sa.ForeignKeyConstraint(["lender_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["borrower_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_loans_lender_id", "lender_id"),
        sa.Index("ix_loans_borrower_id", "borrower_id"),
        sa.Index("idx_loan_status", "status"),
        sa.Index("idx_loan_parties", "lender_id", "borrower_id"),
    )

    # Create loan_payments table
    op.create_table(
        "loan_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("loan_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_loan_payments_loan_id", "loan_id"),
    )

    # Create predictions table
    op.create_table(
        "predictions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "target",
            sa.Enum("ELECTRICITY", "GAS", "SHARED_BUDGET", name="predictiontarget"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("horizon_months", sa.Integer(), nullable=False),
        sa.Column("predicted_units", sa.BigInteger(), nullable=False),
        sa.Column("predicted_amount", sa.BigInteger(), nullable=False),
        sa.Column("model_name", sa.String(length=100), nullable=False),
        sa.Column("model_version", sa.String(length=50), nullable=False),
        sa.Column("created_from", sa.String(length=50), nullable=False, server_default="bills"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_predictions_target", "target"),
    )

    # Create audit_logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_audit_logs_entity_type", "entity_type"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("predictions")
    op.drop_table("loan_payments")
    op.drop_table("loans")
    op.drop_table("allocations")
    op.drop_table("consumptions")
    op.drop_table("bills")
    op.drop_table("template_allocations")
    op.drop_table("recurring_bill_templates")
    op.drop_table("users")
    op.drop_table("groups")
