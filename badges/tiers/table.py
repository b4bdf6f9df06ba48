"""Badge tier table.

Holds the ordered tier definitions and validates them once at load time.

Table rules:
  - at least one tier
  - sorted ascending by level, no duplicate levels
  - the lowest tier is a floor tier (all thresholds zero)
  - no threshold decreases as the level rises
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from shared.config import DEFAULT_TIERS
from shared.models import TierDefinition

__all__ = ["DEFAULT_TIERS", "TierConfigError", "TierTable"]


class TierConfigError(ValueError):
    """Raised when a tier table violates the ordering or floor-tier rules."""


def _validate(tiers: list[TierDefinition]) -> None:
    if not tiers:
        raise TierConfigError("Tier table is empty.")

    for lower, higher in zip(tiers, tiers[1:]):
        if higher.level == lower.level:
            raise TierConfigError(
                f"Duplicate tier level {higher.level} ('{lower.name}' and '{higher.name}')."
            )
        if higher.level < lower.level:
            raise TierConfigError(
                f"Tiers must be sorted ascending by level: '{higher.name}' (level "
                f"{higher.level}) follows '{lower.name}' (level {lower.level})."
            )
        for attr in ("min_rating", "min_reviews", "min_projects"):
            if getattr(higher, attr) < getattr(lower, attr):
                raise TierConfigError(
                    f"Tier '{higher.name}' requires less {attr} than lower tier '{lower.name}'."
                )

    if not tiers[0].is_floor():
        raise TierConfigError(
            f"Lowest tier '{tiers[0].name}' must have all-zero thresholds."
        )


class TierTable:
    """Validated, level-ordered tier definitions.

    Args:
        tiers: Tier definitions, sorted ascending by level.
            Defaults to the production Bronze/Silver/Gold/Platinum table.

    Raises:
        TierConfigError: If the table breaks any of the table rules.
    """

    def __init__(self, tiers: Iterable[TierDefinition] | None = None) -> None:
        tier_list = list(DEFAULT_TIERS if tiers is None else tiers)
        _validate(tier_list)
        self._tiers = tier_list
        self._by_level = {t.level: t for t in tier_list}

    def __iter__(self) -> Iterator[TierDefinition]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def __repr__(self) -> str:
        names = ", ".join(f"{t.name}={t.level}" for t in self._tiers)
        return f"TierTable({names})"

    @property
    def floor(self) -> TierDefinition:
        return self._tiers[0]

    @property
    def highest(self) -> TierDefinition:
        return self._tiers[-1]

    def get(self, level: int) -> TierDefinition:
        """Get the tier with this level.

        Raises:
            KeyError: If no tier has this level.
        """
        try:
            return self._by_level[level]
        except KeyError:
            raise KeyError(f"No tier with level {level}.") from None

    def by_name(self, name: str) -> TierDefinition:
        """Get a tier by name (case-insensitive).

        Raises:
            KeyError: If no tier has this name.
        """
        wanted = name.strip().lower()
        for tier in self._tiers:
            if tier.name.lower() == wanted:
                return tier
        raise KeyError(f"Unknown tier '{name}'.")

    def next_above(self, tier: TierDefinition) -> TierDefinition | None:
        """Get the tier with the smallest level above ``tier``, or None at the top."""
        for candidate in self._tiers:
            if candidate.level > tier.level:
                return candidate
        return None
