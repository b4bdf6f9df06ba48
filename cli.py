"""Unified CLI for badge-tiers.

Evaluates performance snapshots into badge tiers and reports badge status,
transition history and the leaderboard.

Usage:
    python -m cli evaluate <user> --rating R --reviews N --projects N
    python -m cli status <user>
    python -m cli history <user> [--since 30d]
    python -m cli tiers
    python -m cli leaderboard [--tier NAME] [--limit N]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from badges.engine import BadgeEngine, EvaluationResult
from badges.leaderboard import build_leaderboard, tier_counts
from badges.tiers.resolver import InvalidSnapshotError
from badges.tiers.table import TierConfigError, TierTable
from shared.config import BadgeTiersConfig, load_config
from shared.models import BadgeInfo, PerformanceSnapshot, TierDefinition, TransitionReason
from shared.storage import create_store, parse_since

logger = logging.getLogger(__name__)

UNAVAILABLE = "Badge information unavailable."


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="badge-tiers",
        description="Achievement badge tiers from rating, reviews and completed projects",
    )
    parser.add_argument("--config", default=None, help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- evaluate ---
    sp_eval = subparsers.add_parser("evaluate", help="Evaluate a user's snapshot and store the result")
    sp_eval.add_argument("user", help="User id")
    sp_eval.add_argument("--rating", type=float, required=True, help="Average rating (0-5)")
    sp_eval.add_argument("--reviews", type=int, required=True, help="Total review count")
    sp_eval.add_argument("--projects", type=int, required=True, help="Completed project count")

    # --- status ---
    sp_status = subparsers.add_parser("status", help="Show a user's badge and progress")
    sp_status.add_argument("user", help="User id")

    # --- history ---
    sp_history = subparsers.add_parser("history", help="Show a user's tier transitions")
    sp_history.add_argument("user", help="User id")
    sp_history.add_argument("--since", default="", help="Time range: 7d, 30d, 24h, 1w or ISO date")

    # --- tiers ---
    subparsers.add_parser("tiers", help="Show the tier table")

    # --- leaderboard ---
    sp_board = subparsers.add_parser("leaderboard", help="Show the badge leaderboard")
    sp_board.add_argument("--tier", default="", help="Only show users in this tier")
    sp_board.add_argument("--limit", type=_positive_int, default=None, help="Maximum entries to show")

    return parser


def _load(args: argparse.Namespace) -> BadgeTiersConfig:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path=config_path)


def _build_engine(config: BadgeTiersConfig) -> BadgeEngine:
    """Validate the tier table and wire the engine to its store."""
    table = TierTable(config.tiers)
    return BadgeEngine(table, create_store(config.storage), config.engine)


def _bar(percent: float) -> str:
    filled = int(percent / 5)
    return "█" * filled + "░" * (20 - filled)


def _format_tier(tier: TierDefinition) -> str:
    """Format a tier for display."""
    icon = f"{tier.icon} " if tier.icon else ""
    return f"{icon}{tier.name} (level {tier.level})"


def _format_evaluation(result: EvaluationResult, table: TierTable) -> str:
    """Format an EvaluationResult for display. Returns the formatted string."""
    lines = [f"Tier: {_format_tier(result.tier)}"]
    transition = result.transition
    if transition is None:
        lines.append("No change.")
    elif transition.reason == TransitionReason.INITIAL:
        lines.append(f"Started at {result.tier.name}.")
    else:
        from_level = transition.from_tier_level
        try:
            from_name = table.get(from_level).name
        except KeyError:
            from_name = f"Level {from_level}"
        lines.append(f"{transition.reason.value.capitalize()}: {from_name} -> {result.tier.name}")
        if result.state.times_earned_current_tier > 1:
            lines.append(f"Comeback! Earned {result.state.times_earned_current_tier}x")
    return "\n".join(lines)


def _format_badge_info(info: BadgeInfo) -> str:
    """Format BadgeInfo for display. Returns the formatted string."""
    lines = []
    lines.append(f"User:    {info.state.user_id}")
    lines.append(f"Badge:   {_format_tier(info.current_tier)}")
    lines.append(f"Earned:  {info.state.earned_at.strftime('%Y-%m-%d')}")
    if info.is_comeback:
        lines.append(f"Comeback! Earned {info.state.times_earned_current_tier}x")
    lines.append("")
    lines.append("Performance:")
    lines.append(f"  Rating:   {info.snapshot.rating:.2f}")
    lines.append(f"  Reviews:  {info.snapshot.total_reviews}")
    lines.append(f"  Projects: {info.snapshot.completed_projects}")

    progress = info.progress
    lines.append("")
    if progress.next_tier is None:
        lines.append("Highest tier reached.")
    else:
        lines.append(f"Progress to {progress.next_tier.name}:")
        for cp in progress.criteria:
            if cp.gap > 0:
                need = f"{cp.gap:.2f} needed" if cp.criterion.value == "rating" else f"{cp.gap:.0f} more needed"
            else:
                need = "completed"
            lines.append(f"  {cp.criterion.value:<9} {_bar(cp.percent)} {cp.percent:5.1f}%  {need}")

    if info.history:
        lines.append("")
        lines.append("Badge History:")
        for entry in info.history:
            if entry.from_tier:
                move = f"{entry.from_tier} -> {entry.to_tier}"
            else:
                move = f"Started at {entry.to_tier}"
            lines.append(f"  {entry.occurred_at.strftime('%Y-%m-%d')}  {move}  ({entry.reason.value})")

    return "\n".join(lines)


def cmd_evaluate(args: argparse.Namespace, config: BadgeTiersConfig) -> int:
    """Evaluate a snapshot for one user and store the outcome."""
    engine = _build_engine(config)

    try:
        snapshot = PerformanceSnapshot(
            rating=args.rating,
            total_reviews=args.reviews,
            completed_projects=args.projects,
        )
        result = engine.evaluate(args.user, snapshot)
    except (ValidationError, InvalidSnapshotError) as e:
        print(f"Error: invalid snapshot: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(_format_evaluation(result, engine.table))
    return 0


def cmd_status(args: argparse.Namespace, config: BadgeTiersConfig) -> int:
    """Show a user's current badge, progress and history."""
    engine = _build_engine(config)

    try:
        info = engine.badge_info(args.user)
    except (KeyError, ValueError) as e:
        logger.warning("Badge info for %s failed: %s", args.user, e)
        info = None

    if info is None:
        print(UNAVAILABLE, file=sys.stderr)
        return 1

    print(_format_badge_info(info))
    return 0


def cmd_history(args: argparse.Namespace, config: BadgeTiersConfig) -> int:
    """Show a user's tier transitions, oldest first."""
    engine = _build_engine(config)

    try:
        since = parse_since(args.since) if args.since else None
    except ValueError as e:
        print(f"Error: invalid --since value: {e}", file=sys.stderr)
        return 1

    entries = engine.history_entries(args.user, since=since)
    if not entries:
        print(f"No transitions recorded for '{args.user}'.")
        return 0

    for entry in entries:
        if entry.from_tier is None:
            move = f"Started at {entry.to_tier}"
        else:
            move = f"{entry.from_tier} -> {entry.to_tier}"
        print(f"{entry.occurred_at.strftime('%Y-%m-%d %H:%M')}  {entry.reason.value:<9}  {move}")
    return 0


def cmd_tiers(args: argparse.Namespace, config: BadgeTiersConfig) -> int:
    """Print the tier table."""
    table = TierTable(config.tiers)

    print(f"{'Tier':<14} {'Rating':>6} {'Reviews':>8} {'Projects':>9}")
    for tier in reversed(list(table)):
        print(
            f"{_format_tier(tier):<14} {tier.min_rating:>6.1f} "
            f"{tier.min_reviews:>8} {tier.min_projects:>9}"
        )
    return 0


def cmd_leaderboard(args: argparse.Namespace, config: BadgeTiersConfig) -> int:
    """Print tier counts and the ranked leaderboard."""
    engine = _build_engine(config)
    records = engine.store.list_records()

    try:
        entries = build_leaderboard(records, engine.table, tier_name=args.tier or None, limit=args.limit)
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return 1

    counts = tier_counts(records, engine.table)
    print("  ".join(f"{c.tier.name}: {c.count}" for c in counts))
    print("")

    if not entries:
        print("No users found.")
        return 0

    for e in entries:
        comeback = "  (comeback)" if e.is_comeback else ""
        print(
            f"{e.rank:>3}. {e.user_id:<20} {e.tier.name:<9} "
            f"{e.snapshot.rating:.2f}  {e.snapshot.total_reviews} reviews  "
            f"{e.snapshot.completed_projects} projects{comeback}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "evaluate": cmd_evaluate,
        "status": cmd_status,
        "history": cmd_history,
        "tiers": cmd_tiers,
        "leaderboard": cmd_leaderboard,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        config = _load(args)
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    level = logging.DEBUG if args.verbose else config.logging.level.upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        return handler(args, config)
    except TierConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
