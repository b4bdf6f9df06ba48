"""Badge engine.

Runs the per-user evaluation sequence against a store:

    read record → resolve tier → record transition → commit record + transition

Commits are optimistic: the store rejects a write whose expected version is
stale, and the engine re-reads and retries a bounded number of times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from shared.config import EngineConfig, load_config
from shared.models import (
    BadgeInfo,
    BadgeRecord,
    BadgeState,
    HistoryEntry,
    PerformanceSnapshot,
    TierDefinition,
    TierTransition,
)
from shared.storage import BadgeStore, StaleRecordError, TransitionFilters

from badges.progress.calculator import progress_for
from badges.tiers.resolver import resolve_tier
from badges.tiers.table import TierTable
from badges.transitions.recorder import record_transition

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Outcome of evaluating one user's snapshot."""

    tier: TierDefinition
    state: BadgeState
    transition: TierTransition | None = None
    previous_level: int | None = None

    @property
    def changed(self) -> bool:
        return self.transition is not None


class BadgeEngine:
    """Evaluates snapshots into badge tiers and keeps the store consistent.

    Args:
        table: Validated tier table.
        store: Badge store backend.
        config: Engine configuration. Loaded from config files if not provided.
    """

    def __init__(
        self,
        table: TierTable,
        store: BadgeStore,
        config: EngineConfig | None = None,
    ) -> None:
        if config is None:
            config = load_config().engine
        self.table = table
        self.store = store
        self.config = config

    def evaluate(
        self,
        user_id: str,
        snapshot: PerformanceSnapshot,
        now: datetime | None = None,
    ) -> EvaluationResult:
        """Resolve the user's tier from a snapshot and persist any change.

        Raises:
            InvalidSnapshotError: If the snapshot is out of range.
            StaleRecordError: If every commit attempt lost a race.
        """
        tier = resolve_tier(snapshot, self.table)
        attempt = 1

        while True:
            when = now or datetime.now()
            record = self.store.get_record(user_id)
            previous_state = record.state if record is not None else None
            expected_version = record.version if record is not None else 0

            # History is only needed to count re-entries on a tier change
            history: list[TierTransition] = []
            if previous_state is not None and previous_state.current_tier_level != tier.level:
                history = self.store.query_transitions(TransitionFilters(user_id=user_id))

            outcome = record_transition(user_id, previous_state, tier, when, history)
            new_record = BadgeRecord(
                state=outcome.new_state,
                snapshot=snapshot,
                evaluated_at=when,
            )

            try:
                stored = self.store.commit(new_record, outcome.transition, expected_version)
            except StaleRecordError as e:
                if attempt >= self.config.max_commit_attempts:
                    raise
                logger.warning("Retrying badge evaluation for %s (attempt %d): %s", user_id, attempt, e)
                attempt += 1
                continue
            break

        previous_level = previous_state.current_tier_level if previous_state else None
        if outcome.transition is not None:
            logger.info(
                "Badge %s for %s: %s -> %s",
                outcome.transition.reason.value,
                user_id,
                previous_level if previous_level is not None else "-",
                tier.name,
            )

        return EvaluationResult(
            tier=tier,
            state=stored.state,
            transition=outcome.transition,
            previous_level=previous_level,
        )

    def history(self, user_id: str, since: datetime | None = None) -> list[TierTransition]:
        """Get a user's transitions, oldest first."""
        return self.store.query_transitions(
            TransitionFilters(user_id=user_id, start_date=since)
        )

    def badge_info(self, user_id: str) -> BadgeInfo | None:
        """Build the badge progress view for a user.

        Returns:
            BadgeInfo, or None if the user has never been evaluated.
        """
        record = self.store.get_record(user_id)
        if record is None:
            return None

        current = self.table.get(record.state.current_tier_level)
        entries = list(reversed(self.history_entries(user_id)))

        return BadgeInfo(
            current_tier=current,
            state=record.state,
            snapshot=record.snapshot,
            is_comeback=record.state.times_earned_current_tier > 1,
            progress=progress_for(record.snapshot, current, self.table),
            history=entries,
        )

    def history_entries(self, user_id: str, since: datetime | None = None) -> list[HistoryEntry]:
        """Get a user's transitions with tier names, oldest first."""
        return [self._history_entry(t) for t in self.history(user_id, since)]

    def _tier_name(self, level: int | None) -> str | None:
        if level is None:
            return None
        try:
            return self.table.get(level).name
        except KeyError:
            return f"Level {level}"

    def _history_entry(self, transition: TierTransition) -> HistoryEntry:
        return HistoryEntry(
            from_tier=self._tier_name(transition.from_tier_level),
            to_tier=self._tier_name(transition.to_tier_level) or "",
            reason=transition.reason,
            occurred_at=transition.occurred_at,
        )
