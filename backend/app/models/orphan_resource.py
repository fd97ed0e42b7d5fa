"""Orphaned resource database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class CleanupStatus(str, Enum):
    """Orphan lifecycle status."""

    DETECTED = "detected"  # Seen by the latest scan
    SCHEDULED = "scheduled"  # A user queued it for cleanup
    CLEANED = "cleaned"  # Removed through this system (historical record)


OPEN_STATUSES = (CleanupStatus.DETECTED.value, CleanupStatus.SCHEDULED.value)


class OrphanType(str, Enum):
    """Why the resource is considered orphaned."""

    UNATTACHED = "unattached"
    UNUSED = "unused"
    IDLE = "idle"


class RiskLevel(str, Enum):
    """Risk of cleaning the resource up."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OrphanResource(Base):
    """External resource believed to be unreferenced and cost-incurring."""

    __tablename__ = "orphaned_resources"
    __table_args__ = (
        # One open row per owner, account and resource; cleaned rows are history
        Index(
            "uq_orphaned_resources_owner_account_resource_open",
            "owner_id",
            "cloud_account_id",
            "resource_id",
            unique=True,
            postgresql_where=text("cleanup_status != 'cleaned'"),
            sqlite_where=text("cleanup_status != 'cleaned'"),
        ),
    )

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
        index=True,
    )
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    resource_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    service_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    region: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    orphan_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    last_activity: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    estimated_monthly_cost: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )
    risk_level: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=RiskLevel.MEDIUM.value,
    )
    detection_metadata: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    cleanup_status: Mapped[str] = mapped_column(
        String(20),
        default=CleanupStatus.DETECTED.value,
        nullable=False,
        index=True,
    )
    detected_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    cleaned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<OrphanResource {self.resource_type}:{self.resource_id} [{self.cleanup_status}]>"
