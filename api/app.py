"""FastAPI application for the badge-tiers REST API.

Exposes snapshot evaluation, badge status, transition history and the
leaderboard. Supports optional API key authentication and rate limiting.

Usage:
    uvicorn api.app:create_app --factory
"""

from __future__ import annotations

import importlib.metadata
import logging
import time
from collections import defaultdict
from pathlib import Path

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from api.schemas import (
    ErrorResponse,
    EvaluateRequest,
    EvaluateResponse,
    HealthResponse,
    HistoryResponse,
    LeaderboardResponse,
)
from badges.engine import BadgeEngine
from badges.leaderboard import build_leaderboard, tier_counts
from badges.tiers.resolver import InvalidSnapshotError
from badges.tiers.table import TierTable
from shared.config import load_config
from shared.models import BadgeInfo, PerformanceSnapshot, TierDefinition
from shared.storage import create_store, parse_since

logger = logging.getLogger(__name__)

UNAVAILABLE = "Badge information unavailable."


# --- Configuration ---


class APIConfig:
    """API configuration with sensible defaults.

    Attributes:
        api_key: Optional API key for authentication. Empty string disables auth.
        rate_limit: Max requests per window per client.
        rate_window: Rate limit window in seconds.
        cors_origins: Allowed CORS origins.
        config_path: Optional path to a badge-tiers config file.
        data_dir: Overrides the configured storage path when set.
    """

    def __init__(
        self,
        api_key: str = "",
        rate_limit: int = 60,
        rate_window: int = 60,
        cors_origins: list[str] | None = None,
        config_path: str = "",
        data_dir: str = "",
    ) -> None:
        self.api_key = api_key
        self.rate_limit = rate_limit
        self.rate_window = rate_window
        self.cors_origins = cors_origins or ["*"]
        self.config_path = config_path
        self.data_dir = data_dir


# --- Rate limiter ---


class RateLimiter:
    """Simple in-memory sliding-window rate limiter."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60) -> None:
        self.max_requests = max_requests
        self.window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def check(self, client_id: str) -> bool:
        """Return True if the request is allowed."""
        now = time.time()
        cutoff = now - self.window
        self._requests[client_id] = [t for t in self._requests[client_id] if t > cutoff]
        if len(self._requests[client_id]) >= self.max_requests:
            return False
        self._requests[client_id].append(now)
        return True


# --- App factory ---


def create_app(config: APIConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    The tier table is validated here, so a bad table stops startup.

    Args:
        config: API configuration. Uses defaults if not provided.

    Returns:
        Configured FastAPI app.

    Raises:
        TierConfigError: If the configured tier table is invalid.
    """
    if config is None:
        config = APIConfig()

    try:
        version = importlib.metadata.version("badge-tiers")
    except importlib.metadata.PackageNotFoundError:
        version = "0.1.0"

    settings = load_config(config_path=Path(config.config_path) if config.config_path else None)
    if config.data_dir:
        settings.storage.path = config.data_dir
    table = TierTable(settings.tiers)

    app = FastAPI(
        title="badge-tiers API",
        description="REST API for achievement badge tiers and tier history.",
        version=version,
        responses={
            401: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
        },
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.settings = settings
    app.state.table = table
    app.state.rate_limiter = RateLimiter(config.rate_limit, config.rate_window)

    # --- Dependencies ---

    async def verify_api_key(
        request: Request,
        x_api_key: str | None = Header(default=None),
    ) -> None:
        """Verify API key if authentication is configured."""
        cfg: APIConfig = request.app.state.config
        if not cfg.api_key:
            return
        if x_api_key != cfg.api_key:
            raise HTTPException(status_code=401, detail="Invalid or missing API key.")

    async def check_rate_limit(request: Request) -> None:
        """Enforce per-client rate limiting."""
        limiter: RateLimiter = request.app.state.rate_limiter
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.check(client_ip):
            raise HTTPException(status_code=429, detail="Rate limit exceeded.")

    # --- Lazy loader ---

    def _get_engine() -> BadgeEngine:
        if not hasattr(app.state, "_engine"):
            app.state._engine = BadgeEngine(table, create_store(settings.storage), settings.engine)
        return app.state._engine

    guarded = [Depends(verify_api_key), Depends(check_rate_limit)]

    # --- Routes ---

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=version)

    @app.get("/tiers", response_model=list[TierDefinition], dependencies=guarded)
    async def list_tiers() -> list[TierDefinition]:
        """List the tier table, lowest level first."""
        return list(table)

    @app.post("/users/{user_id}/evaluate", response_model=EvaluateResponse, dependencies=guarded)
    async def evaluate(user_id: str, req: EvaluateRequest) -> EvaluateResponse:
        """Evaluate a performance snapshot and store any tier change."""
        engine = _get_engine()
        try:
            snapshot = PerformanceSnapshot(**req.model_dump())
            result = engine.evaluate(user_id, snapshot)
        except (ValidationError, InvalidSnapshotError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid snapshot: {e}") from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return EvaluateResponse(
            tier=result.tier,
            state=result.state,
            changed=result.changed,
            transition=result.transition,
        )

    @app.get("/users/{user_id}/badge", response_model=BadgeInfo, dependencies=guarded)
    async def get_badge(user_id: str) -> BadgeInfo:
        """Get a user's badge, progress toward the next tier and history."""
        engine = _get_engine()
        try:
            info = engine.badge_info(user_id)
        except (KeyError, ValueError) as e:
            logger.warning("Badge info for %s failed: %s", user_id, e)
            info = None
        if info is None:
            raise HTTPException(status_code=404, detail=UNAVAILABLE)
        return info

    @app.get("/users/{user_id}/history", response_model=HistoryResponse, dependencies=guarded)
    async def get_history(user_id: str, since: str = "") -> HistoryResponse:
        """Get a user's tier transitions, oldest first."""
        engine = _get_engine()
        try:
            start = parse_since(since) if since else None
            entries = engine.history_entries(user_id, since=start)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return HistoryResponse(user_id=user_id, entries=entries)

    @app.get("/leaderboard", response_model=LeaderboardResponse, dependencies=guarded)
    async def leaderboard(
        tier: str = "",
        limit: int | None = Query(default=None, ge=1),
    ) -> LeaderboardResponse:
        """Rank users by tier and performance, with per-tier member counts."""
        engine = _get_engine()
        records = engine.store.list_records()
        try:
            entries = build_leaderboard(records, table, tier_name=tier or None, limit=limit)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"Unknown tier '{tier}'.") from e
        return LeaderboardResponse(counts=tier_counts(records, table), entries=entries)

    return app
