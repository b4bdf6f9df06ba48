"""Progress toward the next badge tier, per criterion, for display."""

from __future__ import annotations

from shared.models import (
    Criterion,
    CriterionProgress,
    PerformanceSnapshot,
    ProgressReport,
    TierDefinition,
)

from badges.tiers.table import TierTable


def criterion_progress(criterion: Criterion, current: float, required: float) -> CriterionProgress:
    """Compute gap and percent-to-goal for one criterion.

    A zero threshold is trivially satisfied (100%).
    """
    gap = max(0.0, required - current)
    if gap <= 0 or required == 0:
        percent = 100.0
    else:
        percent = min(100.0, max(0.0, (required - gap) / required * 100))
    return CriterionProgress(
        criterion=criterion,
        current=current,
        required=required,
        gap=gap,
        percent=percent,
    )


def compute_progress(
    snapshot: PerformanceSnapshot,
    current_tier: TierDefinition,
    next_tier: TierDefinition | None,
) -> ProgressReport:
    """Compute progress from the current tier toward the next.

    Args:
        snapshot: Current performance metrics.
        current_tier: Tier the user holds now.
        next_tier: Tier with the smallest level above current_tier, or None
            when the user already holds the highest tier.

    Returns:
        ProgressReport; criteria is empty at the highest tier.
    """
    if next_tier is None:
        return ProgressReport(current_tier=current_tier)

    criteria = [
        criterion_progress(Criterion.RATING, snapshot.rating, next_tier.min_rating),
        criterion_progress(Criterion.REVIEWS, snapshot.total_reviews, next_tier.min_reviews),
        criterion_progress(
            Criterion.PROJECTS, snapshot.completed_projects, next_tier.min_projects
        ),
    ]
    return ProgressReport(current_tier=current_tier, next_tier=next_tier, criteria=criteria)


def progress_for(
    snapshot: PerformanceSnapshot,
    tier: TierDefinition,
    table: TierTable,
) -> ProgressReport:
    """Compute progress using the table to find the next tier."""
    return compute_progress(snapshot, tier, table.next_above(tier))
