"""Run tracking backed by an SQLite audit table.

Every analysis run gets one ``analysis_runs`` row created as ``pending``
and moved to exactly one terminal state. Tracking writes never raise to
callers: failures are logged as ``TrackingWriteError`` warnings so an
audit hiccup cannot abort an otherwise successful analysis.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fieldscope._types import BoundingBox, parse_date
from fieldscope.config import get_default_config
from fieldscope.exceptions import TrackingWriteError

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Lifecycle state of an analysis run."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RunRecord:
    """Snapshot of one analysis run.

    Args:
        id: Run identifier (hex UUID).
        field_id: Field the run analyzed, if any.
        bbox: Analyzed extent.
        acquisition_date: Requested imagery date.
        status: Current lifecycle state.
        started_at: UTC time the run was opened.
        completed_at: UTC time of the terminal transition.
        error_message: Failure detail for ``failed`` runs.
    """

    id: str
    field_id: str | None
    bbox: BoundingBox
    acquisition_date: date
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not RunStatus.PENDING


_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS analysis_runs (
    id TEXT PRIMARY KEY,
    field_id TEXT,
    bbox_json TEXT NOT NULL,
    acquisition_date TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_runs_field ON analysis_runs(field_id);
CREATE INDEX IF NOT EXISTS idx_runs_started ON analysis_runs(started_at);
"""

_SELECT_COLUMNS = (
    "id, field_id, bbox_json, acquisition_date, status, "
    "started_at, completed_at, error_message"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_record(row: tuple[Any, ...]) -> RunRecord:
    return RunRecord(
        id=row[0],
        field_id=row[1],
        bbox=BoundingBox.parse(json.loads(row[2])),
        acquisition_date=date.fromisoformat(row[3]),
        status=RunStatus(row[4]),
        started_at=datetime.fromisoformat(row[5]),
        completed_at=datetime.fromisoformat(row[6]) if row[6] else None,
        error_message=row[7],
    )


class RunTracker:
    """Creates run records and applies their terminal transitions.

    One SQLite connection is shared behind a lock and every mutation is
    its own transaction, so a half-written transition is never visible.

    Args:
        db_path: SQLite file, ``":memory:"``, or ``None`` for
            ``Config.runs_db`` of the active configuration.

    Example:
        >>> tracker = RunTracker(":memory:")
        >>> run = tracker.begin("7", [13.40, 46.05, 13.42, 46.07], "2024-06-01")
        >>> run.status
        <RunStatus.PENDING: 'pending'>
        >>> tracker.complete(run.id)
        True
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            db_path = get_default_config().runs_db
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        with self._lock:
            self._conn.executescript(_CREATE_TABLE_SQL)

    def begin(
        self,
        field_id: Any,
        bbox: BoundingBox | list[float],
        acquisition_date: date | str,
    ) -> RunRecord:
        """Open a ``pending`` run.

        If the row cannot be written, the failure is logged and the
        (unpersisted) record is still returned.
        """
        record = RunRecord(
            id=uuid.uuid4().hex,
            field_id=None if field_id is None else str(field_id),
            bbox=BoundingBox.parse(bbox),
            acquisition_date=parse_date(acquisition_date),
            status=RunStatus.PENDING,
            started_at=_utcnow(),
        )
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO analysis_runs "
                    "(id, field_id, bbox_json, acquisition_date, status, started_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.field_id,
                        json.dumps(record.bbox.as_list()),
                        record.acquisition_date.isoformat(),
                        record.status.value,
                        record.started_at.isoformat(),
                    ),
                )
        except sqlite3.Error as exc:
            self._log_write_failure(
                TrackingWriteError(
                    what=f"Could not create run record {record.id}",
                    cause=str(exc),
                    fix=f"Check that {self._db_path} is writable",
                )
            )
        else:
            logger.debug("Run %s opened for field %s", record.id, record.field_id)
        return record

    def complete(self, run_id: str) -> bool:
        """Mark a pending run ``completed``.

        Returns:
            ``True`` if the transition was written, ``False`` if the run is
            unknown, already terminal, or the write failed.
        """
        return self._finish(run_id, RunStatus.COMPLETED, None)

    def fail(self, run_id: str, message: str) -> bool:
        """Mark a pending run ``failed`` with *message*.

        Returns:
            ``True`` if the transition was written, ``False`` otherwise.
        """
        return self._finish(run_id, RunStatus.FAILED, message or "Unknown error")

    def _finish(self, run_id: str, status: RunStatus, message: str | None) -> bool:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "UPDATE analysis_runs "
                    "SET status = ?, completed_at = ?, error_message = ? "
                    "WHERE id = ? AND status = ?",
                    (
                        status.value,
                        _utcnow().isoformat(),
                        message,
                        run_id,
                        RunStatus.PENDING.value,
                    ),
                )
                updated = cursor.rowcount
        except sqlite3.Error as exc:
            self._log_write_failure(
                TrackingWriteError(
                    what=f"Could not mark run {run_id} {status.value}",
                    cause=str(exc),
                    fix=f"Check that {self._db_path} is writable",
                )
            )
            return False

        if updated == 0:
            self._log_write_failure(
                TrackingWriteError(
                    what=f"Could not mark run {run_id} {status.value}",
                    cause="Run not found or already finished",
                )
            )
            return False

        logger.debug("Run %s marked %s", run_id, status.value)
        return True

    @staticmethod
    def _log_write_failure(error: TrackingWriteError) -> None:
        logger.warning("Run tracking write failed: %s", error)

    def get(self, run_id: str) -> RunRecord | None:
        """Return the current snapshot of a run, or ``None`` if unknown."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM analysis_runs WHERE id = ?",  # noqa: S608
                (run_id,),
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_runs(self, field_id: Any = None, limit: int = 50) -> list[RunRecord]:
        """Return runs, newest first, optionally for one field."""
        query = f"SELECT {_SELECT_COLUMNS} FROM analysis_runs"  # noqa: S608
        params: tuple[Any, ...] = ()
        if field_id is not None:
            query += " WHERE field_id = ?"
            params = (str(field_id),)
        query += " ORDER BY started_at DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, (*params, limit)).fetchall()
        return [_row_to_record(row) for row in rows]

    def history(self, field_id: Any = None, limit: int = 50) -> pd.DataFrame:
        """Export runs as a pandas DataFrame, newest first.

        Columns: ``id, field_id, acquisition_date, status, started_at,
        completed_at, duration_s, error_message``.
        """
        import pandas as pd

        columns = [
            "id",
            "field_id",
            "acquisition_date",
            "status",
            "started_at",
            "completed_at",
            "duration_s",
            "error_message",
        ]
        rows: list[dict[str, Any]] = []
        for run in self.list_runs(field_id=field_id, limit=limit):
            duration = None
            if run.completed_at is not None:
                duration = (run.completed_at - run.started_at).total_seconds()
            rows.append(
                {
                    "id": run.id,
                    "field_id": run.field_id,
                    "acquisition_date": run.acquisition_date.isoformat(),
                    "status": run.status.value,
                    "started_at": run.started_at.isoformat(),
                    "completed_at": run.completed_at.isoformat()
                    if run.completed_at
                    else None,
                    "duration_s": duration,
                    "error_message": run.error_message,
                }
            )
        return pd.DataFrame(rows, columns=columns)

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()


_default_trackers: dict[str, RunTracker] = {}
_tracker_lock = threading.Lock()


def get_default_tracker() -> RunTracker:
    """Return the process-wide tracker on ``Config.runs_db``.

    One tracker (and one SQLite connection) is kept per database path, so
    runs recorded through the default tracker stay visible to later calls,
    including with ``runs_db=":memory:"``.
    """
    db_path = str(get_default_config().runs_db)
    with _tracker_lock:
        tracker = _default_trackers.get(db_path)
        if tracker is None:
            tracker = RunTracker(db_path)
            _default_trackers[db_path] = tracker
        return tracker


def reset_default_tracker() -> None:
    """Close and forget the process-wide trackers."""
    with _tracker_lock:
        trackers = list(_default_trackers.values())
        _default_trackers.clear()
    for tracker in trackers:
        tracker.close()
