"""Audit log of executed lifecycle actions."""

import uuid
from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class LifecycleActionLog(Base):
    """One row per executor call, whatever triggered it."""

    __tablename__ = "lifecycle_action_logs"

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
    schedule_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    action_kind: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    trigger: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )  # 'schedule', 'orphan_cleanup', 'rightsizing'
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )  # RunStatus value
    message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error_code: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    details: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<LifecycleActionLog {self.action_kind}:{self.resource_id} {self.status}>"
