"""Request and response schemas for the REST API.

Thin wrappers around shared models to define API-specific fields
(e.g. optional inputs, response envelopes).
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from shared.models import (
    BadgeState,
    HistoryEntry,
    LeaderboardEntry,
    TierCount,
    TierDefinition,
    TierTransition,
)


# --- Requests ---


class EvaluateRequest(BaseModel):
    """Request body for POST /users/{user_id}/evaluate.

    Bounds are checked by the tier resolver so that out-of-range metrics are
    reported as invalid snapshots rather than schema errors.
    """

    rating: float = Field(..., description="Average rating, 0-5.")
    total_reviews: int = Field(..., description="Total number of reviews.")
    completed_projects: int = Field(..., description="Number of completed projects.")


# --- Responses ---


class EvaluateResponse(BaseModel):
    """Response for POST /users/{user_id}/evaluate."""

    tier: TierDefinition
    state: BadgeState
    changed: bool
    transition: TierTransition | None = None


class HistoryResponse(BaseModel):
    """Response for GET /users/{user_id}/history."""

    user_id: str
    entries: list[HistoryEntry] = Field(default_factory=list)


class LeaderboardResponse(BaseModel):
    """Response for GET /leaderboard."""

    counts: list[TierCount] = Field(default_factory=list)
    entries: list[LeaderboardEntry] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str = ""


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
