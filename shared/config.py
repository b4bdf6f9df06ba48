"""Configuration management for badge-tiers.

Loads YAML config with cascading precedence: repo root → user home → defaults.
"""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from shared.models import TierDefinition

# --- Config Schema ---

CONFIG_FILENAME = ".badge-tiers.yaml"


# Production tier table
DEFAULT_TIERS: tuple[TierDefinition, ...] = (
    TierDefinition(
        name="Bronze", level=1, min_rating=0.0, min_reviews=0, min_projects=0,
        icon="🥉", color="#CD7F32",
    ),
    TierDefinition(
        name="Silver", level=2, min_rating=4.0, min_reviews=5, min_projects=3,
        icon="🥈", color="#C0C0C0",
    ),
    TierDefinition(
        name="Gold", level=3, min_rating=4.5, min_reviews=15, min_projects=10,
        icon="🥇", color="#FFD700",
    ),
    TierDefinition(
        name="Platinum", level=4, min_rating=4.8, min_reviews=30, min_projects=25,
        icon="💎", color="#E5E4E2",
    ),
)


class StorageConfig(BaseModel):
    """Configuration for the badge store backend."""

    backend: str = "jsonl"
    path: str = "./badge-data/"


class EngineConfig(BaseModel):
    """Configuration for the badge engine."""

    max_commit_attempts: int = Field(ge=1, default=3)


class LoggingConfig(BaseModel):
    level: str = "WARNING"


class BadgeTiersConfig(BaseModel):
    """Top-level configuration for badge-tiers."""

    tiers: list[TierDefinition] = Field(default_factory=lambda: list(DEFAULT_TIERS))
    storage: StorageConfig = Field(default_factory=StorageConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# --- Config Loading ---


def _find_config_files(start_dir: Path | None = None) -> list[Path]:
    """Find config files in cascading order: user home (lowest) → repo root (highest).

    Returns paths in precedence order (lowest first, highest last) so that
    later entries override earlier ones when merged.
    """
    candidates: list[Path] = []

    home_config = Path.home() / CONFIG_FILENAME
    if home_config.is_file():
        candidates.append(home_config)

    search_dir = start_dir or Path.cwd()
    repo_config = search_dir / CONFIG_FILENAME
    if repo_config.is_file() and repo_config != home_config:
        candidates.append(repo_config)

    return candidates


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge override into base. Override values take precedence.

    Lists (such as ``tiers``) are replaced wholesale, never merged item by item.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Path | None = None,
    start_dir: Path | None = None,
) -> BadgeTiersConfig:
    """Load badge-tiers configuration with cascading precedence.

    Priority (highest to lowest):
    1. Explicit config_path (if provided)
    2. Repo root / start_dir .badge-tiers.yaml
    3. User home .badge-tiers.yaml
    4. Built-in defaults

    The tier list is only schema-checked here; ordering and floor-tier
    rules are enforced when a ``TierTable`` is built from it.

    Args:
        config_path: Explicit path to a config file (overrides discovery).
        start_dir: Directory to search for config files (defaults to cwd).

    Returns:
        Validated BadgeTiersConfig.
    """
    merged: dict[str, Any] = {}

    if config_path is not None:
        if config_path.is_file():
            merged = _load_yaml(config_path)
    else:
        for path in _find_config_files(start_dir):
            merged = _deep_merge(merged, _load_yaml(path))

    return BadgeTiersConfig.model_validate(merged)


@functools.lru_cache(maxsize=1)
def get_config() -> BadgeTiersConfig:
    """Get the cached global configuration. Loaded once per session."""
    return load_config()


def clear_config_cache() -> None:
    """Clear the cached configuration. Useful for testing."""
    get_config.cache_clear()
