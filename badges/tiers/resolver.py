"""Tier resolution.

Maps a performance snapshot to the highest tier whose thresholds are all
met. Rating, reviews and projects are independent hard gates: a tier
qualifies only when every one of them is satisfied (``>=``, no tolerance).
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from shared.models import PerformanceSnapshot, TierDefinition

from badges.tiers.table import TierTable


class InvalidSnapshotError(ValueError):
    """Raised when a snapshot carries negative or out-of-range metrics."""


def check_snapshot(snapshot: PerformanceSnapshot) -> None:
    """Reject snapshots that could only come from an upstream data bug.

    Raises:
        InvalidSnapshotError: On a negative value, a NaN rating or a rating above 5.
    """
    if math.isnan(snapshot.rating) or snapshot.rating < 0 or snapshot.rating > 5:
        raise InvalidSnapshotError(f"Rating {snapshot.rating} is outside [0, 5].")
    if snapshot.total_reviews < 0:
        raise InvalidSnapshotError(f"Review count {snapshot.total_reviews} is negative.")
    if snapshot.completed_projects < 0:
        raise InvalidSnapshotError(
            f"Completed project count {snapshot.completed_projects} is negative."
        )


def qualifies(snapshot: PerformanceSnapshot, tier: TierDefinition) -> bool:
    """Check whether a snapshot meets all three thresholds of a tier."""
    return (
        snapshot.rating >= tier.min_rating
        and snapshot.total_reviews >= tier.min_reviews
        and snapshot.completed_projects >= tier.min_projects
    )


def resolve_tier(
    snapshot: PerformanceSnapshot,
    tiers: TierTable | Sequence[TierDefinition],
) -> TierDefinition:
    """Resolve the highest tier the snapshot qualifies for.

    Args:
        snapshot: Current performance metrics.
        tiers: A TierTable, or tier definitions sorted ascending by level
            with a zero-threshold floor tier.

    Returns:
        The qualifying tier with the highest level (the floor tier at worst).

    Raises:
        InvalidSnapshotError: If the snapshot is out of range.
    """
    check_snapshot(snapshot)

    table = tiers if isinstance(tiers, TierTable) else TierTable(tiers)
    ordered = list(table)
    for tier in reversed(ordered):
        if qualifies(snapshot, tier):
            return tier
    return table.floor
