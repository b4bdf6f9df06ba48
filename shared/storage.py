"""Storage backends for badge-tiers.

Transitions are append-only JSONL with daily rotation; each user's badge
record is a single JSON file. Writes for one user are serialized by a
per-user file lock and guarded by a version compare-and-swap, so a record
and its transition are always committed together.
"""

from __future__ import annotations

import fcntl
import logging
import os
import re
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from shared.config import StorageConfig
from shared.models import BadgeRecord, TierTransition, TransitionReason

logger = logging.getLogger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.@-]+$")


class StaleRecordError(RuntimeError):
    """Raised when a commit's expected version no longer matches the stored record."""

    def __init__(self, user_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Badge record for '{user_id}' is at version {actual}, expected {expected}."
        )
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


# --- Query Filters ---


class TransitionFilters(BaseModel):
    """Filters for querying stored transitions."""

    user_id: str | None = None
    reason: TransitionReason | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def _matches(transition: TierTransition, filters: TransitionFilters) -> bool:
    """Check if a transition matches the given filters."""
    if filters.user_id and transition.user_id != filters.user_id:
        return False
    if filters.reason and transition.reason != filters.reason:
        return False
    if filters.start_date and transition.occurred_at < filters.start_date:
        return False
    if filters.end_date and transition.occurred_at > filters.end_date:
        return False
    return True


def parse_since(since: str) -> datetime:
    """Parse a relative time string like '7d', '30d', '24h' into a datetime.

    ISO dates are also accepted. Offset-aware values are converted to naive
    local time to compare with stored timestamps.

    Raises:
        ValueError: If the string is neither a relative range nor an ISO date.
    """
    since = since.strip().lower()
    now = datetime.now()
    if since.endswith("d"):
        return now - timedelta(days=int(since[:-1]))
    elif since.endswith("h"):
        return now - timedelta(hours=int(since[:-1]))
    elif since.endswith("w"):
        return now - timedelta(weeks=int(since[:-1]))

    if since.endswith("z"):
        since = since[:-1] + "+00:00"
    parsed = datetime.fromisoformat(since.upper())
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _check_user_id(user_id: str) -> str:
    if not user_id or user_id in (".", "..") or not _USER_ID_RE.match(user_id):
        raise ValueError(f"Invalid user id: {user_id!r}")
    return user_id


# --- Storage Protocol ---


@runtime_checkable
class BadgeStore(Protocol):
    """Protocol for badge storage backends."""

    def get_record(self, user_id: str) -> BadgeRecord | None:
        """Get a user's badge record, or None if never evaluated."""
        ...

    def list_records(self) -> list[BadgeRecord]:
        """List every stored badge record."""
        ...

    def query_transitions(self, filters: TransitionFilters | None = None) -> list[TierTransition]:
        """Query stored transitions, oldest first."""
        ...

    def commit(
        self,
        record: BadgeRecord,
        transition: TierTransition | None,
        expected_version: int,
    ) -> BadgeRecord:
        """Atomically write a record and its transition. Returns the stored record."""
        ...


# --- JSONL Backend ---


class JSONLBadgeStore:
    """File-backed badge store.

    Layout under ``base_path``::

        records/{user_id}.json              current badge record per user
        transitions-YYYY-MM-DD.jsonl        append-only transition log
        locks/{user_id}.lock                per-user commit lock
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._records_dir = self.base_path / "records"
        self._locks_dir = self.base_path / "locks"
        self._records_dir.mkdir(parents=True, exist_ok=True)
        self._locks_dir.mkdir(parents=True, exist_ok=True)

    # --- paths ---

    def _record_path(self, user_id: str) -> Path:
        return self._records_dir / f"{_check_user_id(user_id)}.json"

    def _file_for_date(self, dt: datetime) -> Path:
        """Get the JSONL file path for a given date."""
        return self.base_path / f"transitions-{dt.strftime('%Y-%m-%d')}.jsonl"

    def _all_files(self) -> list[Path]:
        """Get all JSONL transition files, sorted by date."""
        return sorted(self.base_path.glob("transitions-*.jsonl"))

    def _files_in_range(self, filters: TransitionFilters | None) -> list[Path]:
        """Get JSONL files that could contain transitions in the date range."""
        all_files = self._all_files()
        if not filters or (not filters.start_date and not filters.end_date):
            return all_files

        result = []
        for f in all_files:
            try:
                date_str = f.stem.replace("transitions-", "")
                file_date = datetime.strptime(date_str, "%Y-%m-%d").date()
            except ValueError:
                continue

            if filters.start_date and file_date < filters.start_date.date():
                continue
            if filters.end_date and file_date > filters.end_date.date():
                continue
            result.append(f)
        return result

    # --- locking ---

    @contextmanager
    def lock(self, user_id: str) -> Iterator[None]:
        """Hold the exclusive commit lock for one user."""
        lock_path = self._locks_dir / f"{_check_user_id(user_id)}.lock"
        with open(lock_path, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    # --- records ---

    def get_record(self, user_id: str) -> BadgeRecord | None:
        """Get a user's badge record, or None if never evaluated."""
        path = self._record_path(user_id)
        if not path.exists():
            return None
        return BadgeRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def list_records(self) -> list[BadgeRecord]:
        """List every stored badge record, sorted by user id."""
        records = []
        for path in sorted(self._records_dir.glob("*.json")):
            try:
                records.append(BadgeRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except ValueError:
                logger.warning("Skipping unreadable badge record %s", path)
        return records

    def _write_record(self, record: BadgeRecord) -> None:
        """Replace a record file atomically."""
        target = self._record_path(record.user_id)
        fd, tmp_name = tempfile.mkstemp(dir=self._records_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # --- transitions ---

    def _append_transition(self, transition: TierTransition) -> None:
        """Append a transition. Thread-safe via file locking."""
        target_file = self._file_for_date(transition.occurred_at)
        line = transition.model_dump_json() + "\n"

        with open(target_file, "a", encoding="utf-8") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(line)
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _read_file(self, path: Path) -> list[TierTransition]:
        """Read all transitions from a single JSONL file."""
        transitions: list[TierTransition] = []
        if not path.exists():
            return transitions
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    transitions.append(TierTransition.model_validate_json(line))
                except ValueError:
                    logger.warning("Skipping malformed transition line in %s", path.name)
        return transitions

    def query_transitions(self, filters: TransitionFilters | None = None) -> list[TierTransition]:
        """Query transitions with optional filters, oldest first."""
        results = []
        for f in self._files_in_range(filters):
            for transition in self._read_file(f):
                if filters is None or _matches(transition, filters):
                    results.append(transition)
        return sorted(results, key=lambda t: t.occurred_at)

    # --- commit ---

    def commit(
        self,
        record: BadgeRecord,
        transition: TierTransition | None,
        expected_version: int,
    ) -> BadgeRecord:
        """Write a record and its transition under the user's lock.

        Args:
            record: New badge record (its own version field is ignored).
            transition: Transition to append, or None when the tier is unchanged.
            expected_version: Version read before computing the record
                (0 for a user with no record yet).

        Returns:
            The stored record, at ``expected_version + 1``.

        Raises:
            StaleRecordError: If another writer committed in between.
        """
        user_id = record.user_id
        with self.lock(user_id):
            current = self.get_record(user_id)
            actual = current.version if current is not None else 0
            if actual != expected_version:
                raise StaleRecordError(user_id, expected_version, actual)

            stored = record.model_copy(update={"version": expected_version + 1})
            if transition is not None:
                self._append_transition(transition)
            self._write_record(stored)

        logger.debug("Committed badge record for %s at version %d", user_id, stored.version)
        return stored


# --- Factory ---


def create_store(config: StorageConfig | None = None) -> JSONLBadgeStore:
    """Create a badge store from configuration.

    Args:
        config: Storage configuration. If None, uses defaults.

    Returns:
        A configured badge store.
    """
    if config is None:
        config = StorageConfig()

    if config.backend == "jsonl":
        return JSONLBadgeStore(base_path=config.path)

    raise ValueError(f"Unknown storage backend: {config.backend!r}. Supported: 'jsonl'")
