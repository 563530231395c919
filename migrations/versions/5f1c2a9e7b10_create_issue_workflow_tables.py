"""create_issue_workflow_tables

Create `users`, `issues`, `issue_history` and `debt_accruals` for the
maintenance issue workflow.

Revision ID: 5f1c2a9e7b10
Revises:
Create Date: 2026-10-18 09:12:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a9e7b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="tenant"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("debt", sa.Float(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)

    if "issues" not in existing_tables:
        op.create_table(
            "issues",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("urgency", sa.String(length=20), nullable=False, server_default="not-urgent"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="reported"),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("cost", sa.Float(), nullable=True),
            sa.Column("eta", sa.DateTime(timezone=True), nullable=True),
            sa.Column("eta_acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_issue_status", "issues", ["status"])
        op.create_index("idx_issue_tenant", "issues", ["tenant_id"])
        op.create_index("idx_issue_assignee", "issues", ["assignee_id"])

    if "issue_history" not in existing_tables:
        op.create_table(
            "issue_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("issue_id", sa.String(length=36), nullable=False),
            sa.Column("actor", sa.String(length=50), nullable=False),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_issue_history_issue", "issue_history", ["issue_id", "id"])

    if "debt_accruals" not in existing_tables:
        op.create_table(
            "debt_accruals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("issue_id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("transition_key", sa.String(length=40), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("issue_id", "transition_key", name="uq_debt_accrual_issue_transition"),
        )
        op.create_index("idx_debt_accrual_status", "debt_accruals", ["status"])
        op.create_index("ix_debt_accruals_tenant_id", "debt_accruals", ["tenant_id"])


def downgrade():
    op.drop_table("debt_accruals")
    op.drop_table("issue_history")
    op.drop_table("issues")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
