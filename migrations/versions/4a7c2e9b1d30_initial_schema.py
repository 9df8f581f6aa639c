"""initial schema: auth, tenants, tiers, organization requests, tracking, gdpr

Revision ID: 4a7c2e9b1d30
Revises:
Create Date: 2026-10-17 09:12:44.318502

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '4a7c2e9b1d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=False), nullable=nullable)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    # ---------- auth / rbac / audit ----------
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=64), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            _ts("created_at"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=128), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            _ts("created_at"),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _ts("created_at"),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("client_ip", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(length=320), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )

    # ---------- tenants ----------
    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False, unique=True),
            sa.Column("subscription_tier", sa.String(length=64), nullable=True),
            sa.Column("max_locations", sa.Integer(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=128), nullable=False, unique=True),
            sa.Column("subscription_tier", sa.String(length=64), nullable=True),
            sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="active"),
            _ts("trial_ends_at", nullable=True),
            _ts("subscription_ends_at", nullable=True),
            sa.Column(
                "organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
            ),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("idx_tenants_subscription_tier", "tenants", ["subscription_tier"])
        op.create_index("idx_tenants_organization_id", "tenants", ["organization_id"])

    if "tenant_memberships" not in existing_tables:
        op.create_table(
            "tenant_memberships",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
            _ts("created_at"),
            sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
        )

    # ---------- tiers ----------
    if "subscription_tiers" not in existing_tables:
        op.create_table(
            "subscription_tiers",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tier_key", sa.String(length=64), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("display_name", sa.String(length=128), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("price_monthly", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_skus", sa.Integer(), nullable=True),
            sa.Column("max_locations", sa.Integer(), nullable=True),
            sa.Column("tier_type", sa.String(length=32), nullable=False, server_default="individual"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        )
        op.create_index("idx_subscription_tiers_sort", "subscription_tiers", ["sort_order"])

    if "tier_features" not in existing_tables:
        op.create_table(
            "tier_features",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "tier_id", sa.Integer(), sa.ForeignKey("subscription_tiers.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("feature_key", sa.String(length=128), nullable=False),
            sa.Column("feature_name", sa.String(length=255), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_inherited", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("tier_id", "feature_key", name="uq_tier_features_tier_feature"),
        )

    if "tenant_feature_overrides" not in existing_tables:
        op.create_table(
            "tenant_feature_overrides",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("feature", sa.String(length=128), nullable=False),
            sa.Column("granted", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("reason", sa.Text(), nullable=True),
            _ts("expires_at", nullable=True),
            sa.Column("granted_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index(
            "idx_tenant_feature_overrides_tenant_feature", "tenant_feature_overrides", ["tenant_id", "feature"]
        )
        op.create_index("idx_tenant_feature_overrides_expires_at", "tenant_feature_overrides", ["expires_at"])

    if "tier_change_logs" not in existing_tables:
        op.create_table(
            "tier_change_logs",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("entity_type", sa.String(length=64), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("before_state", sa.JSON(), nullable=True),
            sa.Column("after_state", sa.JSON(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("changed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("changed_by_email", sa.String(length=320), nullable=True),
            _ts("created_at"),
        )
        op.create_index("idx_tier_change_logs_entity", "tier_change_logs", ["entity_type", "entity_id"])

    # ---------- organization requests ----------
    if "organization_requests" not in existing_tables:
        op.create_table(
            "organization_requests",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("request_type", sa.String(length=32), nullable=False, server_default="join"),
            sa.Column("estimated_cost", sa.Float(), nullable=True),
            sa.Column("cost_currency", sa.String(length=8), nullable=False, server_default="USD"),
            sa.Column("cost_agreed", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("cost_agreed_at", nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column(
                "processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _ts("processed_at", nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index(
            "idx_organization_requests_tenant_status", "organization_requests", ["tenant_id", "status"]
        )
        op.create_index("idx_organization_requests_status", "organization_requests", ["status"])

    # ---------- tracking ----------
    if "behavior_events" not in existing_tables:
        op.create_table(
            "behavior_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("client_event_id", sa.String(length=64), nullable=True),
            sa.Column("event_type", sa.String(length=64), nullable=False),
            sa.Column("priority", sa.String(length=16), nullable=False, server_default="normal"),
            sa.Column("session_id", sa.String(length=128), nullable=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True),
            sa.Column("entity_type", sa.String(length=64), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("url", sa.String(length=2048), nullable=True),
            sa.Column("referrer", sa.String(length=2048), nullable=True),
            sa.Column("user_agent", sa.String(length=512), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("location_lat", sa.Float(), nullable=True),
            sa.Column("location_lng", sa.Float(), nullable=True),
            sa.Column("event_data_json", sa.Text(), nullable=True),
            _ts("occurred_at"),
            _ts("received_at"),
        )
        op.create_index("idx_behavior_events_occurred_at", "behavior_events", ["occurred_at"])
        op.create_index("idx_behavior_events_tenant_occurred", "behavior_events", ["tenant_id", "occurred_at"])
        op.create_index("idx_behavior_events_user_id", "behavior_events", ["user_id"])
        op.create_index("idx_behavior_events_session_id", "behavior_events", ["session_id"])

    if "tracking_sessions" not in existing_tables:
        op.create_table(
            "tracking_sessions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("session_id", sa.String(length=128), nullable=False, unique=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True),
            _ts("started_at"),
            _ts("ended_at", nullable=True),
            sa.Column("duration_seconds", sa.Float(), nullable=True),
            sa.Column("page_views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("events", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("bounce_rate", sa.Float(), nullable=True),
            sa.Column("entry_page", sa.String(length=2048), nullable=True),
            sa.Column("exit_page", sa.String(length=2048), nullable=True),
            sa.Column("user_agent", sa.String(length=512), nullable=True),
            _ts("created_at"),
        )
        op.create_index("idx_tracking_sessions_started_at", "tracking_sessions", ["started_at"])
        op.create_index("idx_tracking_sessions_tenant_id", "tracking_sessions", ["tenant_id"])

    # ---------- gdpr ----------
    if "consent_records" not in existing_tables:
        op.create_table(
            "consent_records",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("consent_type", sa.String(length=32), nullable=False),
            sa.Column("consented", sa.Boolean(), nullable=False),
            sa.Column("source", sa.String(length=32), nullable=False, server_default="web"),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=512), nullable=True),
            _ts("created_at"),
        )
        op.create_index(
            "idx_consent_records_user_type_created", "consent_records", ["user_id", "consent_type", "created_at"]
        )

    if "data_exports" not in existing_tables:
        op.create_table(
            "data_exports",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("format", sa.String(length=8), nullable=False, server_default="json"),
            sa.Column("storage_key", sa.String(length=512), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            _ts("requested_at"),
            _ts("completed_at", nullable=True),
            _ts("expires_at", nullable=True),
        )
        op.create_index("idx_data_exports_user_id", "data_exports", ["user_id"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "data_exports",
        "consent_records",
        "tracking_sessions",
        "behavior_events",
        "organization_requests",
        "tier_change_logs",
        "tenant_feature_overrides",
        "tier_features",
        "subscription_tiers",
        "tenant_memberships",
        "tenants",
        "organizations",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
