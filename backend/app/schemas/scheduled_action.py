"""Scheduled action Pydantic schemas."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.models.scheduled_action import SCHEDULABLE_ACTIONS, ActionKind, ResourceKind
from app.schemas.action_params import ActionParams, parse_action_params
from app.services.schedule_registry import build_cron_trigger


def _check_cron(expression: str, timezone: str = "UTC") -> None:
    try:
        build_cron_trigger(expression, timezone)
    except ValueError as e:
        raise ValueError(str(e)) from None


def _check_params(action_kind: ActionKind, params: dict[str, Any]) -> None:
    try:
        parse_action_params(action_kind, params)
    except ValidationError as e:
        raise ValueError(f"Invalid parameters for '{action_kind.value}': {e.errors()[0]['msg']}") from None


class ScheduledActionCreate(BaseModel):
    """Schema for scheduling a recurring action."""

    resource_id: str = Field(min_length=1, max_length=255, description="External resource identifier")
    resource_kind: ResourceKind | None = Field(
        default=None,
        description="Explicit resource type; inferred from the identifier when omitted",
    )
    action_kind: ActionKind
    name: str | None = Field(default=None, max_length=255)
    cron_expression: str = Field(description="Five-field crontab expression, e.g. '0 18 * * 1-5'")
    timezone: str = Field(default="UTC", max_length=64)
    params: dict[str, Any] = Field(default_factory=dict, description="Action-kind specific parameters")
    cloud_account_id: uuid.UUID | None = Field(
        default=None, description="Credential set to use; owner's default account when omitted"
    )

    @field_validator("action_kind")
    @classmethod
    def validate_schedulable(cls, v: ActionKind) -> ActionKind:
        if v not in SCHEDULABLE_ACTIONS:
            raise ValueError(f"Action '{v.value}' cannot be scheduled")
        return v

    @model_validator(mode="after")
    def validate_timer_and_params(self) -> "ScheduledActionCreate":
        _check_cron(self.cron_expression, self.timezone)
        _check_params(self.action_kind, self.params)
        return self

    def parsed_params(self) -> ActionParams:
        return parse_action_params(self.action_kind, self.params)


class ScheduledActionUpdate(BaseModel):
    """Schema for updating a scheduled action; only provided fields change."""

    name: str | None = Field(default=None, max_length=255)
    cron_expression: str | None = None
    timezone: str | None = Field(default=None, max_length=64)
    action_kind: ActionKind | None = None
    params: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_update(self) -> "ScheduledActionUpdate":
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        if self.action_kind is not None and self.action_kind not in SCHEDULABLE_ACTIONS:
            raise ValueError(f"Action '{self.action_kind.value}' cannot be scheduled")
        if self.cron_expression is not None or self.timezone is not None:
            _check_cron(self.cron_expression or "* * * * *", self.timezone or "UTC")
        if self.action_kind is not None:
            _check_params(self.action_kind, self.params or {})
        return self


class ScheduledAction(BaseModel):
    """Schema for scheduled action response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    cloud_account_id: uuid.UUID | None
    resource_id: str
    resource_kind: str
    name: str
    action_kind: str
    cron_expression: str
    timezone: str
    is_active: bool
    action_params: dict[str, Any]
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_run_message: str | None = None
    created_at: datetime
    updated_at: datetime


class ScheduleToggleResponse(BaseModel):
    """Result of pausing or resuming a schedule."""

    id: uuid.UUID
    is_active: bool
    message: str


class EnvironmentPreset(str, Enum):
    """Bulk schedule templates for non-production environments."""

    SHUTDOWN = "shutdown"  # stop running instances every weekday evening
    STARTUP = "startup"  # start stopped instances every weekday morning
    WEEKEND = "weekend"  # stop Friday evening, start Monday morning


class EnvironmentScheduleRequest(BaseModel):
    """Schedule every instance tagged with a non-production environment."""

    preset: EnvironmentPreset
    environments: list[str] = Field(
        default_factory=lambda: ["development", "dev", "test", "staging"],
        min_length=1,
        description="Accepted values of the environment tag",
    )
    tag_key: str = Field(default="Environment", min_length=1, max_length=128)
    shutdown_cron: str | None = Field(default=None, description="Overrides the preset's shutdown time")
    startup_cron: str | None = Field(default=None, description="Overrides the preset's startup time")
    timezone: str = Field(default="America/New_York", max_length=64)
    cloud_account_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def validate_timers(self) -> "EnvironmentScheduleRequest":
        for expression in (self.shutdown_cron, self.startup_cron):
            _check_cron(expression or "* * * * *", self.timezone)
        return self


class EnvironmentScheduleResult(BaseModel):
    """Schedules created by one environment request."""

    preset: EnvironmentPreset
    discovered: int
    created: list[ScheduledAction]
    skipped: list[str] = Field(default_factory=list, description="Instances that already had the schedule")
