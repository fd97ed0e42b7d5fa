"""Lifecycle status Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LifecycleSummary(BaseModel):
    """Per-owner lifecycle dashboard figures."""

    active_schedules: int
    orphans_by_status: dict[str, int]
    open_orphan_monthly_cost: float
    pending_recommendations: int
    pending_recommendation_savings: float
    credentials_configured: bool


class CredentialsCheck(BaseModel):
    """Whether lifecycle actions can run for the caller."""

    configured: bool
    cloud_account_id: uuid.UUID | None = None
    regions: list[str] = Field(default_factory=list)
    message: str


class SweepTriggered(BaseModel):
    """A manual sweep was queued on the worker."""

    task_id: str
    sweep: str


class LifecycleActionLog(BaseModel):
    """Schema for an action audit entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    schedule_id: uuid.UUID | None
    resource_id: str
    action_kind: str
    trigger: str
    status: str
    message: str | None
    error_code: str | None
    details: dict[str, Any] | None
    created_at: datetime
