"""Rightsizing Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RightsizingAnalyzeRequest(BaseModel):
    """Schema for analyzing one compute instance."""

    resource_id: str = Field(min_length=1, max_length=255)
    region: str | None = None
    cloud_account_id: uuid.UUID | None = None


class RightsizingRecommendation(BaseModel):
    """Schema for rightsizing recommendation response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    cloud_account_id: uuid.UUID | None = None
    resource_id: str
    region: str | None
    current_type: str
    recommended_type: str
    confidence: int
    estimated_monthly_savings: float
    performance_impact: str
    analysis_data: dict[str, Any] | None
    status: str
    applied_at: datetime | None
    created_at: datetime


class RightsizingApplyResult(BaseModel):
    """Outcome of applying a recommendation."""

    recommendation: RightsizingRecommendation
    success: bool
    message: str
    error_code: str | None = None
