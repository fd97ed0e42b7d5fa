"""CloudAccount Pydantic schemas for request/response validation."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# Resolved credentials handed to provider adapters (never returned by the API)
class AWSCredentials(BaseModel):
    """AWS credentials schema."""

    access_key_id: str = Field(..., min_length=16, max_length=128)
    secret_access_key: str = Field(..., min_length=16, max_length=128)
    region: str = Field(default="us-east-1", pattern="^[a-z]{2}(-gov)?-[a-z]+-[0-9]{1}$")
    regions: list[str] = Field(default_factory=list)
    account_id: uuid.UUID | None = None  # CloudAccount row the keys came from


class CloudAccountCreate(BaseModel):
    """Schema for registering AWS credentials."""

    account_name: str = Field(..., min_length=1, max_length=255)
    account_identifier: str | None = Field(default=None, max_length=255)
    aws_access_key_id: str = Field(..., min_length=16, max_length=128)
    aws_secret_access_key: str = Field(..., min_length=16, max_length=128)
    regions: list[str] | None = Field(
        default=None,
        description="Regions to manage (e.g., ['eu-west-1', 'us-east-1']); first is the default",
    )
    is_active: bool = True


class CloudAccount(BaseModel):
    """Schema for cloud account response (credentials excluded)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    provider: str
    account_name: str
    account_identifier: str | None
    regions: list[str] | None
    is_active: bool
    created_at: datetime
