from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.commerce.models import Base


TIER_TYPES = ("individual", "organization")


class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"
    __table_args__ = (Index("idx_subscription_tiers_sort", "sort_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tier_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "professional"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price_monthly: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # whole currency units
    max_skus: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    max_locations: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier_type: Mapped[str] = mapped_column(String(32), nullable=False, default="individual")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    features: Mapped[list["TierFeature"]] = relationship(
        back_populates="tier",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TierFeature.feature_key",
    )


class TierFeature(Base):
    __tablename__ = "tier_features"
    __table_args__ = (UniqueConstraint("tier_id", "feature_key", name="uq_tier_features_tier_feature"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tier_id: Mapped[int] = mapped_column(ForeignKey("subscription_tiers.id", ondelete="CASCADE"), nullable=False)
    feature_key: Mapped[str] = mapped_column(String(128), nullable=False)
    feature_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_inherited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    tier: Mapped[SubscriptionTier] = relationship(back_populates="features", lazy="selectin")


class TenantFeatureOverride(Base):
    """Per-tenant grant or revocation of a single feature, optionally time-boxed."""

    __tablename__ = "tenant_feature_overrides"
    __table_args__ = (
        Index("idx_tenant_feature_overrides_tenant_feature", "tenant_id", "feature"),
        Index("idx_tenant_feature_overrides_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    feature: Mapped[str] = mapped_column(String(128), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    granted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class TierChangeLog(Base):
    __tablename__ = "tier_change_logs"
    __table_args__ = (Index("idx_tier_change_logs_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)  # tier | tier_feature | override
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)  # create | update | delete | inherit
    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_by_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
