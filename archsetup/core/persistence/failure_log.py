"""
Failure log — append-only, human-readable record of failed steps.

One line per failure, the same shape the old setup scripts wrote to
``failed_packages.log``:

    2026-10-18 14:03:11 - aur:spotify - Command failed (exit 1): ...

Lines are never rewritten or removed. Reasons are flattened to a
single line so the file stays greppable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_SEP = " - "


def _now() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def _one_line(text: str) -> str:
    return " ".join(text.split())


class FailureRecord(BaseModel):
    """A single failed step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    reason: str
    timestamp: str = Field(default_factory=_now)

    def to_line(self) -> str:
        return _SEP.join((self.timestamp, self.step_id, _one_line(self.reason)))

    @classmethod
    def from_line(cls, line: str) -> FailureRecord:
        parts = line.rstrip("\n").split(_SEP, 2)
        if len(parts) != 3:
            raise ValueError(f"not a failure record: {line!r}")
        timestamp, step_id, reason = parts
        datetime.strptime(timestamp, TIMESTAMP_FORMAT)
        return cls(timestamp=timestamp, step_id=step_id, reason=reason)


class FailureLog:
    """Append-only failure log.

    Keeps the records of the current run in memory and writes each one
    through to ``path`` as soon as it is appended. With no path the log
    is memory-only (dry runs, tests).
    """

    def __init__(self, path: Path | None = None):
        self._path = path
        self._records: list[FailureRecord] = []

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def records(self) -> list[FailureRecord]:
        """Records appended during this run, oldest first."""
        return list(self._records)

    def append(self, step_id: str, reason: str) -> FailureRecord:
        """Record a failure and write it through to disk."""
        record = FailureRecord(step_id=step_id, reason=reason)
        self._records.append(record)

        if self._path is None:
            return record

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(record.to_line() + "\n")
        except OSError as e:
            logger.error("Failed to write failure log %s: %s", self._path, e)
        return record

    def read_all(self) -> list[FailureRecord]:
        """Read every record on disk, across all runs.

        Returns:
            List of records, oldest first. Unparseable lines are skipped.
        """
        if self._path is None or not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        records.append(FailureRecord.from_line(line))
                    except ValueError as e:
                        logger.warning("Skipping malformed failure log line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read failure log: %s", e)
        return records

    def read_recent(self, n: int = 20) -> list[FailureRecord]:
        """The most recent N records on disk."""
        return self.read_all()[-n:]
