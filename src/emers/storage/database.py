"""Crash-safe event database.

The database is a single primary file plus a backup snapshot. Every commit
writes a complete new image to a temp file, fsyncs it and atomically renames
it over the primary, so the primary is always either the pre-commit or the
post-commit image. The in-memory snapshot is an immutable tuple that is only
swapped after the rename: readers never see a partial batch.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import os
import threading
from pathlib import Path
from typing import Iterable

from emers.analysis.impact import event_similarity
from emers.analysis.mining import SIMILARITY_CUTOFF, predict_event_outcome
from emers.clock import Clock, SystemClock
from emers.exceptions import CorruptDatabaseError, StorageError
from emers.storage.codec import decode_image, encode_image, encode_stored
from emers.types import AppendResult, DatabaseStats, DetectedEvent, EmersConfig, EventType

log = logging.getLogger(__name__)


def months_before(day: dt.date, months: int) -> dt.date:
    """``day`` moved back by whole calendar months.

    The day of month is clamped to the length of the target month, so
    31 March goes back one month to the last day of February.
    """
    year, month = divmod(day.year * 12 + day.month - 1 - months, 12)
    month += 1
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))


def _fsync_dir(path: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` via temp file, fsync and rename.

    On failure the target is untouched and the temp file is removed.

    :raises StorageError: If any step fails.
    """
    temp = path.with_name(path.name + ".tmp")
    try:
        with open(temp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp, path)
        _fsync_dir(path.parent)
    except OSError as e:
        try:
            temp.unlink(missing_ok=True)
        except OSError:
            log.warning("Could not remove temp file %s", temp)
        raise StorageError(f"Failed to write {path}: {e}", path=str(path)) from e


def _read_image(path: Path) -> tuple[list[DetectedEvent], list[bytes]]:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}", path=str(path)) from e
    return decode_image(data)


class EventDatabase:
    """Append-mostly store of detected events.

    A single writer at a time is enforced with a lock; queries read the
    current snapshot without locking.

    :param path: Primary database file.
    :param backup_path: Backup snapshot file (default: ``<path>.bak``).
    :param clock: Clock used for the recent-event counts in :meth:`stats`.
    :raises CorruptDatabaseError: If the primary is unreadable and no valid
        backup exists.
    :raises StorageError: On I/O failure while opening.
    """

    def __init__(
        self,
        path: Path | str,
        backup_path: Path | str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.path = Path(path)
        self.backup_path = Path(backup_path) if backup_path else self.path.with_name(self.path.name + ".bak")
        self.clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._events: tuple[DetectedEvent, ...] = ()
        self._records: tuple[bytes, ...] = ()
        self._closed = False
        self._open()

    @classmethod
    def from_config(cls, config: EmersConfig, clock: Clock | None = None) -> "EventDatabase":
        return cls(config.event_db_path, config.event_db_backup_path, clock=clock)

    # ------------------------------------------------------------------ lifecycle

    def _open(self) -> None:
        if self.path.exists():
            try:
                events, records = _read_image(self.path)
            except CorruptDatabaseError as primary_error:
                log.warning("Primary database %s is corrupt: %s", self.path, primary_error.message)
                events, records = self._promote_backup(primary_error)
        elif self.backup_path.exists():
            log.warning("Primary database %s is missing", self.path)
            events, records = self._promote_backup(None)
        else:
            log.info("Starting new event database at %s", self.path)
            events, records = [], []
        self._events = tuple(events)
        self._records = tuple(records)

    def _promote_backup(
        self, primary_error: CorruptDatabaseError | None
    ) -> tuple[list[DetectedEvent], list[bytes]]:
        if not self.backup_path.exists():
            raise CorruptDatabaseError(
                f"{self.path} is corrupt and no backup exists",
                path=str(self.path),
                reason=primary_error.message if primary_error else "missing",
            )
        try:
            events, records = _read_image(self.backup_path)
        except CorruptDatabaseError as backup_error:
            raise CorruptDatabaseError(
                f"Both {self.path} and {self.backup_path} are unreadable",
                path=str(self.path),
                backup_path=str(self.backup_path),
                reason=backup_error.message,
            ) from backup_error
        atomic_write(self.path, encode_image(records))
        log.warning("Promoted backup %s (%d events) to %s", self.backup_path, len(events), self.path)
        return events, records

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def __enter__(self) -> "EventDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError(f"Event database {self.path} is closed", path=str(self.path))

    # ------------------------------------------------------------------ writes

    def append(self, event: DetectedEvent) -> AppendResult:
        """Append one event, collapsing it with an existing duplicate."""
        return self.append_many([event])

    def append_many(
        self,
        events: Iterable[DetectedEvent],
        cancel: threading.Event | None = None,
    ) -> AppendResult:
        """Commit a batch of events atomically.

        An event whose ``(symbol, date, type)`` is already stored is dropped
        unless its ``|magnitude|`` is strictly greater, in which case it
        overwrites the stored record and keeps its id. New events get the next
        id in sequence.

        :param events: Events in append order; their ``id`` is ignored.
        :param cancel: Checked between events and before the commit. If set,
            nothing is written and the result is marked cancelled.
        :raises StorageError: If the commit fails; the database is unchanged.
        """
        with self._lock:
            self._check_open()
            stored = list(self._events)
            records = list(self._records)
            index: dict[tuple, int] = {}
            for pos, existing in enumerate(stored):
                index.setdefault(existing.dedup_key, pos)
            first_new = len(stored)
            touched: dict[int, None] = {}
            updated_positions: set[int] = set()
            dropped = 0

            for event in events:
                if cancel is not None and cancel.is_set():
                    return self._cancelled()
                key = event.dedup_key
                pos = index.get(key)
                if pos is None:
                    pos = len(stored)
                    record, raw = encode_stored(event, pos + 1)
                    stored.append(record)
                    records.append(raw)
                    index[key] = pos
                elif abs(event.magnitude) > abs(stored[pos].magnitude):
                    record, raw = encode_stored(event, stored[pos].id)
                    stored[pos] = record
                    records[pos] = raw
                    if pos < first_new:
                        updated_positions.add(pos)
                    log.debug("Overwrote event %d %s with larger magnitude", record.id, key)
                else:
                    dropped += 1
                    log.debug("Dropped duplicate event %s", key)
                    continue
                touched[pos] = None

            if cancel is not None and cancel.is_set():
                return self._cancelled()

            appended = len(stored) - first_new
            if touched:
                atomic_write(self.path, encode_image(records))
                self._events = tuple(stored)
                self._records = tuple(records)
                log.info(
                    "Committed %d new and %d updated events to %s",
                    appended,
                    len(updated_positions),
                    self.path,
                )
            return AppendResult(
                appended=appended,
                updated=len(updated_positions),
                dropped=dropped,
                events=[stored[pos] for pos in touched],
            )

    def _cancelled(self) -> AppendResult:
        log.info("Batch cancelled before commit; nothing written to %s", self.path)
        return AppendResult(cancelled=True)

    def backup(self) -> Path:
        """Snapshot the primary file to the backup path.

        :returns: The backup path.
        :raises StorageError: If the snapshot cannot be written.
        """
        with self._lock:
            self._check_open()
            if not self.path.exists():
                atomic_write(self.path, encode_image(self._records))
            try:
                data = self.path.read_bytes()
            except OSError as e:
                raise StorageError(f"Failed to read {self.path}: {e}", path=str(self.path)) from e
            atomic_write(self.backup_path, data)
            log.info("Backed up %d events to %s", len(self._events), self.backup_path)
            return self.backup_path

    def restore_from_backup(self) -> int:
        """Replace the primary with the backup snapshot.

        :returns: Number of events restored.
        :raises CorruptDatabaseError: If the backup is missing or invalid.
        """
        with self._lock:
            self._check_open()
            if not self.backup_path.exists():
                raise CorruptDatabaseError(f"No backup at {self.backup_path}", path=str(self.backup_path))
            events, records = _read_image(self.backup_path)
            atomic_write(self.path, encode_image(records))
            self._events = tuple(events)
            self._records = tuple(records)
            log.warning("Restored %d events from %s", len(events), self.backup_path)
            return len(events)

    def compact(self) -> None:
        """Rewrite the primary file from the in-memory state."""
        with self._lock:
            self._check_open()
            atomic_write(self.path, encode_image(self._records))
            log.info("Compacted %s (%d events)", self.path, len(self._records))

    # ------------------------------------------------------------------ queries

    def __len__(self) -> int:
        return len(self._events)

    def load(self) -> list[DetectedEvent]:
        """All events in insertion order."""
        return list(self._events)

    def get(self, event_id: int) -> DetectedEvent | None:
        events = self._events
        if 1 <= event_id <= len(events):
            return events[event_id - 1]
        return None

    def find_by_date_range(self, from_date: dt.date, to_date: dt.date) -> list[DetectedEvent]:
        """Events dated between ``from_date`` and ``to_date``, both inclusive."""
        return [event for event in self._events if from_date <= event.date <= to_date]

    def find_by_type(self, event_type: EventType) -> list[DetectedEvent]:
        return [event for event in self._events if event.type == event_type]

    def find_by_symbol(self, symbol: str) -> list[DetectedEvent]:
        return [event for event in self._events if event.symbol == symbol]

    def find_similar(
        self, event: DetectedEvent, max_results: int = 5, min_similarity: float | None = None
    ) -> list[tuple[DetectedEvent, float]]:
        """Stored events most similar to ``event``, best first.

        The event itself (same id) is excluded. Equal scores keep insertion order.

        :param min_similarity: If given, only scores strictly above it are kept.
        """
        scored = [
            (other, event_similarity(event, other))
            for other in self._events
            if not (event.id and other.id == event.id)
        ]
        if min_similarity is not None:
            scored = [pair for pair in scored if pair[1] > min_similarity]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:max_results]

    def predict_outcome(self, event: DetectedEvent, max_results: int = 5) -> float:
        """Expected market impact of ``event`` from its most similar stored events."""
        similar = self.find_similar(event, max_results, min_similarity=SIMILARITY_CUTOFF)
        return predict_event_outcome(event, similar)

    def stats(self) -> DatabaseStats:
        """Totals and recent counts.

        The recent windows run from the same day one calendar month (or year)
        before the clock's today, up to today, both inclusive.
        """
        events = self._events
        today = self.clock.today()
        month_start = months_before(today, 1)
        year_start = months_before(today, 12)
        per_type = {event_type: 0 for event_type in EventType}
        for event in events:
            per_type[event.type] += 1
        dates = [event.date for event in events]
        return DatabaseStats(
            total=len(events),
            per_type_count=per_type,
            last_month_count=sum(1 for day in dates if month_start <= day <= today),
            last_year_count=sum(1 for day in dates if year_start <= day <= today),
            oldest_date=min(dates) if dates else None,
            newest_date=max(dates) if dates else None,
        )


__all__ = ["EventDatabase", "atomic_write"]
