"""Scheduled action database model."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class ActionKind(str, Enum):
    """Operations the executor knows how to perform."""

    SHUTDOWN = "shutdown"
    STARTUP = "startup"
    RESIZE = "resize"
    TERMINATE = "terminate"
    SCALE_DOWN = "scale_down"
    SCALE_UP = "scale_up"
    # Orphan cleanup only, never scheduled
    DELETE = "delete"
    RELEASE = "release"


SCHEDULABLE_ACTIONS = frozenset(
    {
        ActionKind.SHUTDOWN,
        ActionKind.STARTUP,
        ActionKind.RESIZE,
        ActionKind.TERMINATE,
        ActionKind.SCALE_DOWN,
        ActionKind.SCALE_UP,
    }
)


class ResourceKind(str, Enum):
    """Resource type tag stored next to the external identifier."""

    COMPUTE_INSTANCE = "compute_instance"
    DATABASE_INSTANCE = "database_instance"
    AUTOSCALING_GROUP = "autoscaling_group"
    CONTAINER_SERVICE = "container_service"
    VOLUME = "volume"
    ELASTIC_IP = "elastic_ip"
    NETWORK_INTERFACE = "network_interface"


class RunStatus(str, Enum):
    """Outcome of the latest execution."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class ScheduledAction(Base):
    """Recurring cron-driven action against one external resource."""

    __tablename__ = "scheduled_actions"

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
        ForeignKey("cloud_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )  # None = owner's default account
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    resource_kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    action_kind: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
    )
    cron_expression: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )
    # Serialized ActionParams variant matching action_kind
    action_params: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_run_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    last_run_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<ScheduledAction {self.action_kind}:{self.resource_id} '{self.cron_expression}'>"
