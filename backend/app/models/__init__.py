"""SQLAlchemy database models."""

from app.models.cloud_account import CloudAccount
from app.models.scheduled_action import ScheduledAction
from app.models.orphan_resource import OrphanResource
from app.models.rightsizing_recommendation import RightsizingRecommendation
from app.models.lifecycle_action_log import LifecycleActionLog

__all__ = [
    "CloudAccount",
    "ScheduledAction",
    "OrphanResource",
    "RightsizingRecommendation",
    "LifecycleActionLog",
]
