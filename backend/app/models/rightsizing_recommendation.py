"""Rightsizing recommendation database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class RecommendationStatus(str, Enum):
    """Recommendation status enumeration."""

    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


class RightsizingRecommendation(Base):
    """Suggested capacity class change for an under-utilized instance."""

    __tablename__ = "rightsizing_recommendations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )
    cloud_account_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cloud_accounts.id", ondelete="CASCADE"),
        nullable=True,
    )
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    region: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    current_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    recommended_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    confidence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )  # 0-100
    estimated_monthly_savings: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )
    performance_impact: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="low",
    )
    analysis_data: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=RecommendationStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<RightsizingRecommendation {self.resource_id}: {self.current_type} -> {self.recommended_type}>"
