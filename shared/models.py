"""Shared data models for badge-tiers.

Core Pydantic models used across the tier engine, the store, the CLI
and the REST API.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


# --- Enums ---


class TransitionReason(str, Enum):
    """Why a user's tier changed."""

    INITIAL = "initial"
    PROMOTION = "promotion"
    DEMOTION = "demotion"


class Criterion(str, Enum):
    """Performance criteria gating each tier."""

    RATING = "rating"
    REVIEWS = "reviews"
    PROJECTS = "projects"


# --- Tier Models ---


class TierDefinition(BaseModel):
    """A named achievement level with its minimum thresholds."""

    name: str
    level: int = Field(ge=1)
    min_rating: float = Field(ge=0.0, le=5.0, default=0.0)
    min_reviews: int = Field(ge=0, default=0)
    min_projects: int = Field(ge=0, default=0)
    icon: str = ""
    color: str = ""

    def is_floor(self) -> bool:
        """True when every threshold is zero."""
        return self.min_rating == 0 and self.min_reviews == 0 and self.min_projects == 0


class PerformanceSnapshot(BaseModel):
    """A user's rating, review count and completed-project count at evaluation time."""

    rating: float = Field(ge=0.0, le=5.0, default=0.0)
    total_reviews: int = Field(ge=0, default=0)
    completed_projects: int = Field(ge=0, default=0)


# --- Badge State Models ---


class BadgeState(BaseModel):
    """Current tier pointer for a user."""

    user_id: str
    current_tier_level: int
    times_earned_current_tier: int = Field(ge=1, default=1)
    earned_at: datetime = Field(default_factory=datetime.now)


class TierTransition(BaseModel):
    """Append-only record of a tier change (or first assignment)."""

    user_id: str
    from_tier_level: int | None = None
    to_tier_level: int
    reason: TransitionReason
    occurred_at: datetime = Field(default_factory=datetime.now)


class BadgeRecord(BaseModel):
    """Persisted per-user row: badge state plus the snapshot it was derived from."""

    state: BadgeState
    snapshot: PerformanceSnapshot
    evaluated_at: datetime = Field(default_factory=datetime.now)
    version: int = Field(ge=0, default=0)

    @property
    def user_id(self) -> str:
        return self.state.user_id


# --- Progress Models ---


class CriterionProgress(BaseModel):
    """Distance to the next tier on a single criterion."""

    criterion: Criterion
    current: float
    required: float
    gap: float = Field(ge=0.0)
    percent: float = Field(ge=0.0, le=100.0)


class ProgressReport(BaseModel):
    """Per-criterion progress from the current tier toward the next one."""

    current_tier: TierDefinition
    next_tier: TierDefinition | None = None
    criteria: list[CriterionProgress] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def at_max_tier(self) -> bool:
        return self.next_tier is None

    def for_criterion(self, criterion: Criterion) -> CriterionProgress | None:
        """Get progress for one criterion, or None at the maximum tier."""
        for cp in self.criteria:
            if cp.criterion == criterion:
                return cp
        return None


# --- Display Models ---


class HistoryEntry(BaseModel):
    """A transition rendered with tier names for display."""

    from_tier: str | None = None
    to_tier: str
    reason: TransitionReason
    occurred_at: datetime


class BadgeInfo(BaseModel):
    """Everything the badge progress view shows for one user."""

    current_tier: TierDefinition
    state: BadgeState
    snapshot: PerformanceSnapshot
    is_comeback: bool = False
    progress: ProgressReport
    history: list[HistoryEntry] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    """A ranked user on the badge leaderboard."""

    rank: int = Field(ge=1)
    user_id: str
    tier: TierDefinition
    snapshot: PerformanceSnapshot
    earned_at: datetime
    times_earned: int = 1
    is_comeback: bool = False


class TierCount(BaseModel):
    """Number of users currently holding a tier."""

    tier: TierDefinition
    count: int = 0
