"""CPU-based rightsizing analysis for compute instances."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.crud import cloud_account as cloud_account_crud
from app.crud import lifecycle_action_log as action_log_crud
from app.crud import rightsizing as rightsizing_crud
from app.models.rightsizing_recommendation import RecommendationStatus, RightsizingRecommendation
from app.models.scheduled_action import ActionKind, ResourceKind
from app.providers.aws import AWSResourceControl
from app.providers.base import ResourceControlBase
from app.schemas.action_params import ResizeParams
from app.schemas.cloud_account import AWSCredentials
from app.schemas.rightsizing import RightsizingApplyResult
from app.services.action_executor import ActionExecutor
from app.services.cost_calculator import CostCalculator
from app.services.credential_resolver import CredentialResolver
from app.services.lifecycle_errors import InvalidState, NotFoundOrUnauthorized

logger = structlog.get_logger()

ProviderFactory = Callable[[AWSCredentials, str | None], ResourceControlBase]

SIZE_ORDER = ["nano", "micro", "small", "medium", "large", "xlarge", "2xlarge"]


@dataclass
class RecommendationDraft:
    """A recommendation before it is stored."""

    current_type: str
    recommended_type: str
    confidence: int
    estimated_monthly_savings: float
    performance_impact: str
    analysis_data: dict[str, Any] = field(default_factory=dict)


def next_smaller_type(instance_type: str) -> str | None:
    """One size down in the same family, or None for the smallest/unknown size."""
    family, _, size = instance_type.partition(".")
    if size not in SIZE_ORDER:
        return None
    index = SIZE_ORDER.index(size)
    if index == 0:
        return None
    return f"{family}.{SIZE_ORDER[index - 1]}"


def generate_recommendation(
    current_type: str,
    avg_cpu: float,
    max_cpu: float,
    lookback_days: int = 14,
) -> RecommendationDraft | None:
    """
    Build a one-step downsize recommendation.

    Confidence is 95 below 20% average CPU and 85 otherwise. The expected
    performance impact is low when the peak stayed under 50%.
    """
    recommended_type = next_smaller_type(current_type)
    if recommended_type is None:
        return None

    savings = CostCalculator.get_instance_monthly_cost(current_type) - CostCalculator.get_instance_monthly_cost(
        recommended_type
    )

    return RecommendationDraft(
        current_type=current_type,
        recommended_type=recommended_type,
        confidence=95 if avg_cpu < 20 else 85,
        estimated_monthly_savings=round(savings, 2),
        performance_impact="low" if max_cpu < 50 else "medium",
        analysis_data={
            "avg_cpu_utilization": round(avg_cpu, 1),
            "max_cpu_utilization": round(max_cpu, 1),
            "analysis_period_days": lookback_days,
        },
    )


class RightsizingAnalyzer:
    """Reads an instance's CPU history and proposes a smaller type."""

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
        cpu_threshold: float = settings.RIGHTSIZING_CPU_THRESHOLD,
        lookback_days: int = settings.RIGHTSIZING_LOOKBACK_DAYS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._resolver = credential_resolver
        self._provider_factory = provider_factory
        self.cpu_threshold = cpu_threshold
        self.lookback_days = lookback_days
        self._clock = clock

    async def analyze(
        self,
        owner_id: uuid.UUID,
        resource_id: str,
        region: str | None = None,
        account_scope: uuid.UUID | None = None,
    ) -> RecommendationDraft | None:
        """
        Analyze one instance.

        Returns:
            A draft, or None when there are no metrics yet, the instance is
            busy enough or it is already the smallest size

        Raises:
            CredentialsMissing: If no credentials resolve
            LifecycleError: Provider failures propagate unchanged
        """
        credentials = await self._resolver.resolve(owner_id, account_scope)
        return await self.analyze_with_credentials(credentials, resource_id, region)

    async def analyze_with_credentials(
        self,
        credentials: AWSCredentials,
        resource_id: str,
        region: str | None = None,
    ) -> RecommendationDraft | None:
        provider = self._provider_factory(credentials, region)

        instance = await provider.describe_instance(resource_id)
        current_type = instance.get("instance_type")
        if not current_type:
            return None

        end_time = self._clock()
        start_time = end_time - timedelta(days=self.lookback_days)
        datapoints = await provider.get_cpu_statistics(resource_id, start_time, end_time)
        if not datapoints:
            logger.info("rightsizing.no_metrics", resource_id=resource_id)
            return None

        avg_cpu = sum(point["Average"] for point in datapoints) / len(datapoints)
        max_cpu = max(point["Maximum"] for point in datapoints)

        if avg_cpu >= self.cpu_threshold:
            return None

        draft = generate_recommendation(current_type, avg_cpu, max_cpu, self.lookback_days)
        if draft:
            logger.info(
                "rightsizing.recommended",
                resource_id=resource_id,
                current_type=draft.current_type,
                recommended_type=draft.recommended_type,
                avg_cpu=round(avg_cpu, 1),
            )
        return draft


class RightsizingService:
    """Stores, lists and applies rightsizing recommendations."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        credential_resolver: CredentialResolver,
        analyzer: RightsizingAnalyzer,
        executor: ActionExecutor,
        provider_factory: ProviderFactory = AWSResourceControl.from_credentials,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = credential_resolver
        self.analyzer = analyzer
        self._executor = executor
        self._provider_factory = provider_factory

    async def analyze(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        resource_id: str,
        region: str | None = None,
        account_scope: uuid.UUID | None = None,
    ) -> RightsizingRecommendation | None:
        """
        Analyze one instance and store a pending recommendation.

        An existing pending recommendation for the same resource and target is
        returned instead of a duplicate.
        """
        credentials = await self._resolver.resolve(owner_id, account_scope)
        return await self._analyze_and_store(db, owner_id, credentials, resource_id, region)

    async def _analyze_and_store(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        credentials: AWSCredentials,
        resource_id: str,
        region: str | None,
    ) -> RightsizingRecommendation | None:
        draft = await self.analyzer.analyze_with_credentials(credentials, resource_id, region)
        if draft is None:
            return None

        existing = await rightsizing_crud.get_pending_recommendation_for_resource(db, owner_id, resource_id)
        if existing and existing.recommended_type == draft.recommended_type:
            return existing

        return await rightsizing_crud.create_recommendation(
            db,
            owner_id,
            resource_id=resource_id,
            region=region,
            current_type=draft.current_type,
            recommended_type=draft.recommended_type,
            confidence=draft.confidence,
            estimated_monthly_savings=draft.estimated_monthly_savings,
            performance_impact=draft.performance_impact,
            analysis_data=draft.analysis_data,
            cloud_account_id=credentials.account_id,
        )

    async def list_recommendations(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        min_savings: float | None = None,
        confidence_threshold: int | None = None,
    ) -> list[RightsizingRecommendation]:
        return await rightsizing_crud.list_recommendations(db, owner_id, min_savings, confidence_threshold)

    async def apply(
        self,
        db: AsyncSession,
        owner_id: uuid.UUID,
        recommendation_id: uuid.UUID,
    ) -> RightsizingApplyResult:
        """
        Resize the instance to the recommended type, in the account it was analyzed in.

        Raises:
            NotFoundOrUnauthorized: If the owner has no such recommendation
            InvalidState: If the recommendation is no longer pending
        """
        recommendation = await rightsizing_crud.get_recommendation(db, recommendation_id, owner_id)
        if recommendation is None:
            raise NotFoundOrUnauthorized("Recommendation not found")
        if recommendation.status != RecommendationStatus.PENDING.value:
            raise InvalidState(f"Recommendation is already {recommendation.status}")

        params = ResizeParams(target_instance_type=recommendation.recommended_type, region=recommendation.region)
        outcome = await self._executor.execute(
            recommendation.resource_id,
            params,
            owner_id=owner_id,
            resource_kind=ResourceKind.COMPUTE_INSTANCE,
            account_scope=recommendation.cloud_account_id,
        )
        await action_log_crud.log_action_outcome(
            db,
            owner_id,
            resource_id=recommendation.resource_id,
            action_kind=ActionKind.RESIZE.value,
            trigger="rightsizing",
            outcome=outcome,
        )

        if outcome.success:
            await rightsizing_crud.mark_recommendation_applied(db, recommendation_id, owner_id)
            recommendation = await rightsizing_crud.get_recommendation(db, recommendation_id, owner_id)

        return RightsizingApplyResult.model_validate(
            {
                "recommendation": recommendation,
                "success": outcome.success,
                "message": outcome.message,
                "error_code": outcome.error_code,
            },
            from_attributes=True,
        )

    async def run_sweep(self) -> dict[str, int]:
        """Analyze every running instance in every active account; one account failing does not stop the rest."""
        async with self._session_factory() as db:
            accounts = await cloud_account_crud.get_all_active_aws_accounts(db)

        stats = {
            "owners": len({account.owner_id for account in accounts}),
            "accounts": len(accounts),
            "failed": 0,
            "analyzed": 0,
            "recommended": 0,
        }
        for account in accounts:
            try:
                credentials = await self._resolver.resolve(account.owner_id, account.id)
                for region in credentials.regions or [credentials.region]:
                    provider = self._provider_factory(credentials, region)
                    instances = await provider.list_instances(states=["running"])
                    for instance in instances:
                        async with self._session_factory() as db:
                            recommendation = await self._analyze_and_store(
                                db, account.owner_id, credentials, instance["InstanceId"], region
                            )
                        stats["analyzed"] += 1
                        if recommendation is not None:
                            stats["recommended"] += 1
            except Exception:
                stats["failed"] += 1
                logger.exception(
                    "sweep.rightsizing_failed",
                    owner_id=str(account.owner_id),
                    cloud_account_id=str(account.id),
                )

        logger.info("sweep.rightsizing_completed", **stats)
        return stats
