"""Tests for the unified CLI."""

from datetime import datetime
from unittest.mock import patch

import pytest
import yaml

from badges.engine import EvaluationResult
from badges.tiers.table import TierTable
from cli import (
    UNAVAILABLE,
    _build_parser,
    _format_badge_info,
    _format_evaluation,
    _format_tier,
    cmd_evaluate,
    cmd_history,
    cmd_leaderboard,
    cmd_status,
    cmd_tiers,
    main,
)
from shared.models import (
    BadgeInfo,
    BadgeState,
    HistoryEntry,
    PerformanceSnapshot,
    TierTransition,
    TransitionReason,
)
from badges.progress.calculator import progress_for
from shared.config import load_config


# --- Helpers ---


@pytest.fixture
def config_file(tmp_path):
    """Write a config file pointing storage at a temp directory."""
    path = tmp_path / "badge-tiers.yaml"
    path.write_text(yaml.dump({"storage": {"path": str(tmp_path / "data")}}))
    return path


def _run(config_file, *argv):
    return main(["--config", str(config_file), *argv])


def _make_info(times: int = 1) -> BadgeInfo:
    table = TierTable()
    snap = PerformanceSnapshot(rating=4.2, total_reviews=10, completed_projects=10)
    silver = table.get(2)
    return BadgeInfo(
        current_tier=silver,
        state=BadgeState(
            user_id="alice",
            current_tier_level=2,
            times_earned_current_tier=times,
            earned_at=datetime(2026, 2, 3),
        ),
        snapshot=snap,
        is_comeback=times > 1,
        progress=progress_for(snap, silver, table),
        history=[
            HistoryEntry(
                from_tier="Bronze",
                to_tier="Silver",
                reason=TransitionReason.PROMOTION,
                occurred_at=datetime(2026, 2, 3),
            ),
            HistoryEntry(
                to_tier="Bronze",
                reason=TransitionReason.INITIAL,
                occurred_at=datetime(2026, 1, 5),
            ),
        ],
    )


# --- Parser tests ---


class TestBuildParser:
    def test_evaluate_args(self):
        args = _build_parser().parse_args(
            ["evaluate", "alice", "--rating", "4.5", "--reviews", "15", "--projects", "10"]
        )
        assert args.command == "evaluate"
        assert args.user == "alice"
        assert args.rating == 4.5
        assert args.reviews == 15
        assert args.projects == 10

    def test_status_args(self):
        args = _build_parser().parse_args(["status", "alice"])
        assert args.command == "status"
        assert args.user == "alice"

    def test_history_args(self):
        args = _build_parser().parse_args(["history", "alice", "--since", "30d"])
        assert args.since == "30d"

    def test_leaderboard_args(self):
        args = _build_parser().parse_args(["leaderboard", "--tier", "gold", "--limit", "5"])
        assert args.tier == "gold"
        assert args.limit == 5

    @pytest.mark.parametrize("limit", ["0", "-1"])
    def test_leaderboard_limit_must_be_positive(self, limit, capsys):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["leaderboard", "--limit", limit])

    def test_global_args(self):
        args = _build_parser().parse_args(["--config", "/path/to/config.yaml", "-v", "tiers"])
        assert args.config == "/path/to/config.yaml"
        assert args.verbose is True


# --- Formatter tests ---


class TestFormatters:
    def test_format_tier(self):
        text = _format_tier(TierTable().get(3))
        assert "Gold" in text
        assert "level 3" in text

    def test_format_promotion(self):
        table = TierTable()
        result = EvaluationResult(
            tier=table.get(3),
            state=BadgeState(user_id="alice", current_tier_level=3, times_earned_current_tier=2),
            transition=TierTransition(
                user_id="alice",
                from_tier_level=2,
                to_tier_level=3,
                reason=TransitionReason.PROMOTION,
            ),
            previous_level=2,
        )
        text = _format_evaluation(result, table)
        assert "Promotion: Silver -> Gold" in text
        assert "Comeback" in text

    def test_format_transition_from_removed_level(self):
        table = TierTable()
        result = EvaluationResult(
            tier=table.get(2),
            state=BadgeState(user_id="alice", current_tier_level=2),
            transition=TierTransition(
                user_id="alice",
                from_tier_level=9,
                to_tier_level=2,
                reason=TransitionReason.DEMOTION,
            ),
            previous_level=9,
        )
        assert "Demotion: Level 9 -> Silver" in _format_evaluation(result, table)

    def test_format_no_change(self):
        table = TierTable()
        result = EvaluationResult(
            tier=table.floor,
            state=BadgeState(user_id="alice", current_tier_level=1),
        )
        assert "No change." in _format_evaluation(result, table)

    def test_format_badge_info(self):
        text = _format_badge_info(_make_info())
        assert "Silver" in text
        assert "Progress to Gold" in text
        assert "5 more needed" in text
        assert "Bronze -> Silver" in text
        assert "Started at Bronze" in text
        assert "Comeback" not in text

    def test_format_badge_info_comeback(self):
        assert "Earned 2x" in _format_badge_info(_make_info(times=2))


# --- Command tests ---


class TestCommands:
    def test_evaluate_and_status(self, config_file, capsys):
        assert _run(config_file, "evaluate", "alice", "--rating", "4.2", "--reviews", "10", "--projects", "10") == 0
        out = capsys.readouterr().out
        assert "Silver" in out
        assert "Started at Silver" in out

        assert _run(config_file, "status", "alice") == 0
        out = capsys.readouterr().out
        assert "Progress to Gold" in out

    def test_evaluate_promotion(self, config_file, capsys):
        _run(config_file, "evaluate", "alice", "--rating", "4.2", "--reviews", "6", "--projects", "4")
        capsys.readouterr()
        _run(config_file, "evaluate", "alice", "--rating", "4.6", "--reviews", "16", "--projects", "11")
        assert "Promotion: Silver -> Gold" in capsys.readouterr().out

    def test_evaluate_negative_rejected(self, config_file, capsys):
        code = _run(config_file, "evaluate", "alice", "--rating", "4.2", "--reviews", "-3", "--projects", "4")
        assert code == 1
        assert "invalid snapshot" in capsys.readouterr().err

    def test_status_unknown_user(self, config_file, capsys):
        assert _run(config_file, "status", "nobody") == 1
        assert UNAVAILABLE in capsys.readouterr().err

    def test_history(self, config_file, capsys):
        _run(config_file, "evaluate", "alice", "--rating", "4.2", "--reviews", "6", "--projects", "4")
        _run(config_file, "evaluate", "alice", "--rating", "3.0", "--reviews", "6", "--projects", "4")
        capsys.readouterr()
        assert _run(config_file, "history", "alice") == 0
        out = capsys.readouterr().out
        assert "Started at Silver" in out
        assert "Silver -> Bronze" in out
        assert "demotion" in out

    def test_history_since_offset_aware_iso(self, config_file, capsys):
        _run(config_file, "evaluate", "alice", "--rating", "4.2", "--reviews", "6", "--projects", "4")
        capsys.readouterr()
        assert _run(config_file, "history", "alice", "--since", "2020-01-01T00:00:00+00:00") == 0
        assert "Started at Silver" in capsys.readouterr().out
        assert _run(config_file, "history", "alice", "--since", "2099-01-01T00:00:00Z") == 0
        assert "No transitions" in capsys.readouterr().out

    def test_history_invalid_since(self, config_file, capsys):
        assert _run(config_file, "history", "alice", "--since", "yesterday") == 1
        assert "invalid --since" in capsys.readouterr().err

    def test_history_empty(self, config_file, capsys):
        assert _run(config_file, "history", "nobody") == 0
        assert "No transitions" in capsys.readouterr().out

    def test_tiers(self, config_file, capsys):
        assert _run(config_file, "tiers") == 0
        out = capsys.readouterr().out
        assert out.index("Platinum") < out.index("Bronze")

    def test_leaderboard(self, config_file, capsys):
        _run(config_file, "evaluate", "alice", "--rating", "4.6", "--reviews", "16", "--projects", "11")
        _run(config_file, "evaluate", "bob", "--rating", "4.2", "--reviews", "6", "--projects", "4")
        capsys.readouterr()
        assert _run(config_file, "leaderboard") == 0
        out = capsys.readouterr().out
        assert "Gold: 1" in out
        assert out.index("alice") < out.index("bob")

    def test_leaderboard_unknown_tier(self, config_file, capsys):
        assert _run(config_file, "leaderboard", "--tier", "diamond") == 1

    def test_leaderboard_negative_limit_exits(self, config_file, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _run(config_file, "leaderboard", "--limit", "-1")
        assert exc_info.value.code == 2

    def test_command_functions_take_namespace(self, config_file, capsys):
        parser = _build_parser()
        config = load_config(config_path=config_file)
        args = parser.parse_args(["--config", str(config_file), "tiers"])
        assert cmd_tiers(args, config) == 0
        for argv, handler in (
            (["status", "x"], cmd_status),
            (["history", "x"], cmd_history),
            (["leaderboard"], cmd_leaderboard),
        ):
            args = parser.parse_args(["--config", str(config_file), *argv])
            assert handler(args, config) in (0, 1)

    @patch("cli.BadgeEngine")
    def test_evaluate_uses_engine(self, mock_engine_cls, config_file, capsys):
        table = TierTable()
        mock_engine = mock_engine_cls.return_value
        mock_engine.table = table
        mock_engine.evaluate.return_value = EvaluationResult(
            tier=table.floor,
            state=BadgeState(user_id="alice", current_tier_level=1),
        )
        args = _build_parser().parse_args(
            ["--config", str(config_file), "evaluate", "alice", "--rating", "1", "--reviews", "0", "--projects", "0"]
        )
        assert cmd_evaluate(args, load_config(config_path=config_file)) == 0
        mock_engine.evaluate.assert_called_once()


# --- main ---


class TestMain:
    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_bad_tier_table_exit_2(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(
            yaml.dump(
                {
                    "storage": {"path": str(tmp_path / "data")},
                    "tiers": [
                        {"name": "Bronze", "level": 1},
                        {"name": "Gold", "level": 3, "min_rating": 4.5},
                        {"name": "Silver", "level": 2, "min_rating": 4.0},
                    ],
                }
            )
        )
        assert main(["--config", str(path), "tiers"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_config_schema_exit_2(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"engine": {"max_commit_attempts": 0}}))
        assert main(["--config", str(path), "tiers"]) == 2
