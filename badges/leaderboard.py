"""Badge leaderboard.

Ranks users by tier, then rating, completed projects and review count,
and counts members per tier.
"""

from __future__ import annotations

from collections.abc import Iterable

from shared.models import BadgeRecord, LeaderboardEntry, TierCount

from badges.tiers.table import TierTable


def _sort_key(record: BadgeRecord) -> tuple:
    snap = record.snapshot
    return (
        -record.state.current_tier_level,
        -snap.rating,
        -snap.completed_projects,
        -snap.total_reviews,
        record.user_id,
    )


def build_leaderboard(
    records: Iterable[BadgeRecord],
    table: TierTable,
    tier_name: str | None = None,
    limit: int | None = None,
) -> list[LeaderboardEntry]:
    """Rank users for the leaderboard.

    Args:
        records: Stored badge records.
        table: Tier table used to resolve tier levels.
        tier_name: Only include users holding this tier (case-insensitive).
        limit: Maximum number of entries to return.

    Returns:
        Leaderboard entries, rank 1 first.

    Raises:
        KeyError: If tier_name does not name a tier.
        ValueError: If limit is below 1.
    """
    if limit is not None and limit < 1:
        raise ValueError(f"Leaderboard limit must be at least 1, got {limit}.")

    selected = list(records)
    if tier_name:
        wanted = table.by_name(tier_name)
        selected = [r for r in selected if r.state.current_tier_level == wanted.level]

    # Records left at a level no longer in the table are not ranked
    known = {t.level for t in table}
    selected = [r for r in selected if r.state.current_tier_level in known]
    selected.sort(key=_sort_key)
    if limit is not None:
        selected = selected[:limit]

    return [
        LeaderboardEntry(
            rank=i,
            user_id=r.user_id,
            tier=table.get(r.state.current_tier_level),
            snapshot=r.snapshot,
            earned_at=r.state.earned_at,
            times_earned=r.state.times_earned_current_tier,
            is_comeback=r.state.times_earned_current_tier > 1,
        )
        for i, r in enumerate(selected, start=1)
    ]


def tier_counts(records: Iterable[BadgeRecord], table: TierTable) -> list[TierCount]:
    """Count users per tier, highest tier first, including empty tiers."""
    counts = {t.level: 0 for t in table}
    for r in records:
        level = r.state.current_tier_level
        if level in counts:
            counts[level] += 1
    return [TierCount(tier=t, count=counts[t.level]) for t in reversed(list(table))]
