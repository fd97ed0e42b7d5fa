"""CRUD operations for rightsizing recommendations."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.rightsizing_recommendation import (
    RecommendationStatus,
    RightsizingRecommendation,
)


async def create_recommendation(
    db: AsyncSession,
    owner_id: uuid.UUID,
    *,
    resource_id: str,
    region: str | None,
    current_type: str,
    recommended_type: str,
    confidence: int,
    estimated_monthly_savings: float,
    performance_impact: str,
    analysis_data: dict | None = None,
    cloud_account_id: uuid.UUID | None = None,
) -> RightsizingRecommendation:
    """
    Store a pending recommendation.

    Returns:
        Created RightsizingRecommendation object
    """
    recommendation = RightsizingRecommendation(
        owner_id=owner_id,
        cloud_account_id=cloud_account_id,
        resource_id=resource_id,
        region=region,
        current_type=current_type,
        recommended_type=recommended_type,
        confidence=confidence,
        estimated_monthly_savings=estimated_monthly_savings,
        performance_impact=performance_impact,
        analysis_data=analysis_data,
        status=RecommendationStatus.PENDING.value,
    )
    db.add(recommendation)
    await db.commit()
    await db.refresh(recommendation)
    return recommendation


async def get_recommendation(
    db: AsyncSession,
    recommendation_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> RightsizingRecommendation | None:
    result = await db.execute(
        select(RightsizingRecommendation)
        .where(
            RightsizingRecommendation.id == recommendation_id,
            RightsizingRecommendation.owner_id == owner_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_pending_recommendation_for_resource(
    db: AsyncSession,
    owner_id: uuid.UUID,
    resource_id: str,
) -> RightsizingRecommendation | None:
    result = await db.execute(
        select(RightsizingRecommendation)
        .where(
            RightsizingRecommendation.owner_id == owner_id,
            RightsizingRecommendation.resource_id == resource_id,
            RightsizingRecommendation.status == RecommendationStatus.PENDING.value,
        )
        .order_by(RightsizingRecommendation.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_recommendations(
    db: AsyncSession,
    owner_id: uuid.UUID,
    min_savings: float | None = None,
    confidence_threshold: int | None = None,
    status: RecommendationStatus = RecommendationStatus.PENDING,
) -> list[RightsizingRecommendation]:
    """
    List an owner's recommendations, biggest savings first.

    Args:
        db: Database session
        owner_id: Owner UUID
        min_savings: Optional minimum monthly savings
        confidence_threshold: Optional minimum confidence (0-100)
        status: Status filter, pending by default

    Returns:
        List of RightsizingRecommendation objects
    """
    query = select(RightsizingRecommendation).where(
        RightsizingRecommendation.owner_id == owner_id,
        RightsizingRecommendation.status == status.value,
    )
    if min_savings is not None:
        query = query.where(RightsizingRecommendation.estimated_monthly_savings >= min_savings)
    if confidence_threshold is not None:
        query = query.where(RightsizingRecommendation.confidence >= confidence_threshold)

    result = await db.execute(
        query.order_by(
            RightsizingRecommendation.estimated_monthly_savings.desc(),
            RightsizingRecommendation.confidence.desc(),
        )
    )
    return list(result.scalars().all())


async def mark_recommendation_applied(
    db: AsyncSession,
    recommendation_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> int:
    """Flip a pending recommendation to applied; returns rows updated."""
    result = await db.execute(
        update(RightsizingRecommendation)
        .where(
            RightsizingRecommendation.id == recommendation_id,
            RightsizingRecommendation.owner_id == owner_id,
            RightsizingRecommendation.status == RecommendationStatus.PENDING.value,
        )
        .values(
            status=RecommendationStatus.APPLIED.value,
            applied_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def get_pending_summary(db: AsyncSession, owner_id: uuid.UUID) -> tuple[int, float]:
    """(pending count, total pending monthly savings)"""
    result = await db.execute(
        select(
            func.count(RightsizingRecommendation.id),
            func.coalesce(func.sum(RightsizingRecommendation.estimated_monthly_savings), 0.0),
        ).where(
            RightsizingRecommendation.owner_id == owner_id,
            RightsizingRecommendation.status == RecommendationStatus.PENDING.value,
        )
    )
    count, savings = result.one()
    return count, round(float(savings), 2)
