"""Tier transition recorder.

Compares a user's current badge state with a freshly resolved tier and
produces the new state plus, on change, one transition record. Nothing is
persisted here; the caller writes both values together.

Transition rules:
  no previous state   → initial assignment, earned once
  same level          → unchanged state, no transition
  higher level        → promotion
  lower level         → demotion
On promotion or demotion the destination tier's earned count is one more
than the number of earlier transitions into that same level.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from shared.models import BadgeState, TierDefinition, TierTransition, TransitionReason


@dataclass
class TransitionOutcome:
    """New badge state and the transition to log, if any."""

    new_state: BadgeState
    transition: TierTransition | None = None

    @property
    def changed(self) -> bool:
        return self.transition is not None


def times_earned(level: int, history: Iterable[TierTransition]) -> int:
    """Count how many times a tier level has been entered, plus the entry being made now."""
    return 1 + sum(1 for t in history if t.to_tier_level == level)


def record_transition(
    user_id: str,
    previous_state: BadgeState | None,
    resolved_tier: TierDefinition,
    now: datetime,
    history: Iterable[TierTransition] = (),
) -> TransitionOutcome:
    """Derive the next badge state from the previous one and the resolved tier.

    Args:
        user_id: User being evaluated.
        previous_state: Current state, or None on the first evaluation.
        resolved_tier: Tier returned by the resolver for the latest snapshot.
        now: Evaluation timestamp.
        history: The user's earlier transitions, used to count re-entries.

    Returns:
        TransitionOutcome with the new state and the transition (None if unchanged).

    Raises:
        ValueError: If previous_state belongs to a different user.
    """
    if previous_state is None:
        state = BadgeState(
            user_id=user_id,
            current_tier_level=resolved_tier.level,
            times_earned_current_tier=1,
            earned_at=now,
        )
        transition = TierTransition(
            user_id=user_id,
            from_tier_level=None,
            to_tier_level=resolved_tier.level,
            reason=TransitionReason.INITIAL,
            occurred_at=now,
        )
        return TransitionOutcome(new_state=state, transition=transition)

    if previous_state.user_id != user_id:
        raise ValueError(
            f"Badge state belongs to '{previous_state.user_id}', not '{user_id}'."
        )

    if resolved_tier.level == previous_state.current_tier_level:
        return TransitionOutcome(new_state=previous_state)

    if resolved_tier.level > previous_state.current_tier_level:
        reason = TransitionReason.PROMOTION
    else:
        reason = TransitionReason.DEMOTION

    state = BadgeState(
        user_id=user_id,
        current_tier_level=resolved_tier.level,
        times_earned_current_tier=times_earned(resolved_tier.level, history),
        earned_at=now,
    )
    transition = TierTransition(
        user_id=user_id,
        from_tier_level=previous_state.current_tier_level,
        to_tier_level=resolved_tier.level,
        reason=reason,
        occurred_at=now,
    )
    return TransitionOutcome(new_state=state, transition=transition)
