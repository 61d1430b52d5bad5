"""Create employees, payroll_runs, payments and audit_log

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(120), nullable=True),
        sa.Column("department", sa.String(120), nullable=True),
        sa.Column("wallet_id", sa.String(120), nullable=True),
        sa.Column("wallet_address", sa.String(64), nullable=True),
        sa.Column("salary_usd", sa.Numeric(14, 2), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_employees_email", "employees", ["email"], unique=True)
    op.create_index("ix_employees_status", "employees", ["status"])

    op.create_table(
        "payroll_runs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="in_progress"),
        # one row at a time may hold 'active'; the unique constraint is the run mutex
        sa.Column("lock_key", sa.String(16), nullable=True, unique=True),
        sa.Column("pay_period", sa.String(20), nullable=False),
        sa.Column("employee_count", sa.Integer, nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 6), nullable=True),
        sa.Column("tx_hash", sa.String(80), nullable=True),
        sa.Column("explorer_url", sa.Text, nullable=True),
        sa.Column("block_number", sa.BigInteger, nullable=True),
        sa.Column("gas_used", sa.String(40), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payroll_runs_status", "payroll_runs", ["status"])
    op.create_index("ix_payroll_runs_tx_hash", "payroll_runs", ["tx_hash"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Integer, sa.ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("employee_id", sa.Integer, sa.ForeignKey("employees.id"), nullable=False, index=True),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("pay_period", sa.String(20), nullable=False),
        sa.Column("tx_hash", sa.String(80), nullable=False),
        sa.Column("explorer_url", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="submitted"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("audit_log")
    op.drop_table("payments")
    op.drop_index("ix_payroll_runs_tx_hash", table_name="payroll_runs")
    op.drop_index("ix_payroll_runs_status", table_name="payroll_runs")
    op.drop_table("payroll_runs")
    op.drop_index("ix_employees_status", table_name="employees")
    op.drop_index("ix_employees_email", table_name="employees")
    op.drop_table("employees")
