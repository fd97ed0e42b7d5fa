"""Orphaned resource Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OrphanCandidate(BaseModel):
    """One scan hit, before it is reconciled into the store."""

    model_config = ConfigDict(from_attributes=True)

    resource_id: str
    resource_type: str = Field(description="Type of resource (e.g., ebs_volume)")
    resource_name: str | None = None
    service_name: str
    region: str
    orphan_type: str
    last_activity: datetime | None = None
    estimated_monthly_cost: float = Field(description="Monthly cost in USD")
    risk_level: str
    resource_metadata: dict[str, Any] = Field(default_factory=dict)


class OrphanResource(BaseModel):
    """Schema for orphaned resource response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    cloud_account_id: uuid.UUID | None = None
    resource_id: str
    resource_type: str
    resource_name: str | None
    service_name: str
    region: str
    orphan_type: str
    last_activity: datetime | None
    estimated_monthly_cost: float
    risk_level: str
    detection_metadata: dict[str, Any] | None
    cleanup_status: str
    detected_at: datetime
    cleaned_at: datetime | None


class OrphanDetectionRequest(BaseModel):
    """Schema for an on-demand orphan scan."""

    cloud_account_id: uuid.UUID | None = Field(
        default=None, description="Account to scan; owner's default account when omitted"
    )
    service: str | None = Field(default=None, description="Restrict to one service or resource type")


class OrphanDetectionResult(BaseModel):
    """Scan + reconcile summary."""

    cloud_account_id: uuid.UUID | None = None
    detected: int
    upserted: int
    inserted: int
    removed: int
    candidates: list[OrphanCandidate]


class CleanupResult(BaseModel):
    """Outcome of an orphan cleanup request."""

    resource_id: str
    success: bool
    skipped: bool = False
    message: str
    risk_level: str | None = None
    error_code: str | None = None
    savings: float = 0.0
