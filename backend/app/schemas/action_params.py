"""Typed action parameters and execution outcomes.

Each schedulable action kind has its own parameter model; the stored
``scheduled_actions.action_params`` JSON is always one of these variants,
selected by ``kind``.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.models.scheduled_action import ActionKind, RunStatus


class CapacitySnapshot(BaseModel):
    """Group/service capacity captured before a scale-down."""

    min_size: int | None = Field(default=None, ge=0)
    max_size: int | None = Field(default=None, ge=0)
    desired: int = Field(ge=0)


class _ParamsBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    region: str | None = Field(default=None, description="Overrides the account's default region")


class ShutdownParams(_ParamsBase):
    """Stop an instance, or scale a group/service to ``target_capacity``."""

    kind: Literal["shutdown"] = "shutdown"
    cluster: str | None = Field(default=None, description="ECS cluster (container services)")
    force: bool = Field(default=False, description="Force-stop a compute instance")
    create_snapshot: bool = Field(default=False, description="Final snapshot before stopping a database")
    add_tags: bool = Field(default=False, description="Tag instances with the shutdown time")
    target_capacity: int = Field(default=0, ge=0)
    prior_capacity: CapacitySnapshot | None = None


class StartupParams(_ParamsBase):
    """Start an instance, or restore a group/service capacity."""

    kind: Literal["startup"] = "startup"
    cluster: str | None = None
    restore_capacity: CapacitySnapshot | None = None


class ResizeParams(_ParamsBase):
    kind: Literal["resize"] = "resize"
    target_instance_type: str = Field(min_length=3, max_length=50)
    restart_after: bool | None = Field(
        default=None,
        description="Start the instance after the type change; defaults to whether it was running",
    )


class TerminateParams(_ParamsBase):
    kind: Literal["terminate"] = "terminate"
    force: bool = Field(default=False, description="Termination is irreversible and must be forced")


class ScaleDownParams(_ParamsBase):
    kind: Literal["scale_down"] = "scale_down"
    cluster: str | None = None
    target_capacity: int = Field(default=0, ge=0)
    prior_capacity: CapacitySnapshot | None = None


class ScaleUpParams(_ParamsBase):
    kind: Literal["scale_up"] = "scale_up"
    cluster: str | None = None
    restore_capacity: CapacitySnapshot | None = None


class DeleteParams(_ParamsBase):
    kind: Literal["delete"] = "delete"


class ReleaseParams(_ParamsBase):
    kind: Literal["release"] = "release"


ActionParams = Annotated[
    Union[
        ShutdownParams,
        StartupParams,
        ResizeParams,
        TerminateParams,
        ScaleDownParams,
        ScaleUpParams,
        DeleteParams,
        ReleaseParams,
    ],
    Field(discriminator="kind"),
]

action_params_adapter: TypeAdapter[ActionParams] = TypeAdapter(ActionParams)


def parse_action_params(action_kind: ActionKind | str, data: dict[str, Any] | None) -> ActionParams:
    """
    Build the parameter variant for an action kind.

    Args:
        action_kind: Action kind selecting the variant
        data: Raw parameters (a stored ``kind`` key is overridden)

    Returns:
        Validated parameter model

    Raises:
        pydantic.ValidationError: If the parameters do not fit the variant
    """
    payload = dict(data or {})
    payload["kind"] = ActionKind(action_kind).value
    return action_params_adapter.validate_python(payload)


class ActionOutcome(BaseModel):
    """Structured result of one executor call."""

    success: bool
    skipped: bool = False
    message: str
    error_code: str | None = None
    provider_code: str | None = None
    prior_capacity: CapacitySnapshot | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: Exception, **extra: Any) -> "ActionOutcome":
        """Build a failed outcome from a lifecycle error."""
        details = {**getattr(error, "details", {}), **extra.pop("details", {})}
        return cls(
            success=False,
            message=str(error),
            error_code=getattr(error, "code", "UNKNOWN"),
            provider_code=getattr(error, "provider_code", None),
            details=details,
            **extra,
        )

    @property
    def run_status(self) -> RunStatus:
        if self.skipped:
            return RunStatus.SKIPPED
        return RunStatus.SUCCESS if self.success else RunStatus.FAILED

    @property
    def is_retryable(self) -> bool:
        """Only opaque provider failures are worth another attempt."""
        return not self.success and self.error_code == "PROVIDER_ERROR"
