"""add account deletion requests (grace-period erasure)

Revision ID: 7d3e5f1a9c42
Revises: 4a7c2e9b1d30
Create Date: 2026-10-17 14:03:18.902117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '7d3e5f1a9c42'
down_revision: Union[str, Sequence[str], None] = '4a7c2e9b1d30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    if "account_deletion_requests" in set(inspect(bind).get_table_names()):
        return
    op.create_table(
        "account_deletion_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("requested_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("scheduled_deletion_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("cancelled_by_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("admin_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
    )
    op.create_index(
        "idx_account_deletion_requests_user_status", "account_deletion_requests", ["user_id", "status"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_account_deletion_requests_user_status", table_name="account_deletion_requests")
    op.drop_table("account_deletion_requests")
