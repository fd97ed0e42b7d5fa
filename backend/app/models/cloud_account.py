"""CloudAccount database model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, LargeBinary, String
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class CloudAccount(Base):
    """Provider credentials registered by an owner."""

    __tablename__ = "cloud_accounts"

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
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="aws",
    )
    account_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    account_identifier: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )  # AWS account ID, when known

    # Encrypted JSON {"access_key_id": ..., "secret_access_key": ...}
    credentials_encrypted: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )

    regions: Mapped[list | None] = mapped_column(
        JSON,
        nullable=True,
    )  # e.g. ['eu-west-1', 'us-east-1']; first entry is the default region

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
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
        return f"<CloudAccount {self.provider}:{self.account_name}>"
