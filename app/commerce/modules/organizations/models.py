from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.commerce.models import Base

if TYPE_CHECKING:
    from app.commerce.modules.tenants.models import Organization, Tenant


REQUEST_STATUSES = ("pending", "approved", "rejected", "cancelled")
REQUEST_TYPES = ("join", "leave")


class OrganizationRequest(Base):
    """A tenant's request to join (or leave) an organization, processed by platform admins."""

    __tablename__ = "organization_requests"
    __table_args__ = (
        Index("idx_organization_requests_tenant_status", "tenant_id", "status"),
        Index("idx_organization_requests_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    request_type: Mapped[str] = mapped_column(String(32), nullable=False, default="join")

    estimated_cost: Mapped[float | None] = mapped_column(Float, nullable=True)  # monthly
    cost_currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    cost_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cost_agreed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    tenant: Mapped["Tenant"] = relationship(lazy="selectin")
    organization: Mapped["Organization"] = relationship(lazy="selectin")
