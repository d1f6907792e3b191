from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from . import schemas
from .clock import utcnow
from .errors import ConflictError, NotFoundError, TimerAlreadyRunningError, ValidationError
from .storage import Storage, analytics

MIN_SESSION_SECONDS = 60


class TimerService:
    """Time-entry state machine: running, paused and finished.

    Elapsed time is never ticked; it is derived from ``start_time`` and the
    accumulated ``duration`` each time an entry changes state.
    """

    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], datetime] = utcnow,
        min_session_seconds: int = MIN_SESSION_SECONDS,
    ):
        self.storage = storage
        self.clock = clock
        self.min_session_seconds = min_session_seconds

    # ---------------- lookups ----------------

    def require_entry(self, entry_id: int) -> schemas.TimeEntry:
        entry = self.storage.get_time_entry(entry_id)
        if entry is None:
            raise NotFoundError("Time entry not found")
        return entry

    def require_task(self, task_id: int) -> schemas.Task:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    @staticmethod
    def elapsed_seconds(entry: schemas.TimeEntry, now: datetime) -> int:
        return analytics.entry_elapsed(entry, now)

    def running_entry_for_task(self, task_id: int) -> Optional[schemas.TimeEntry]:
        for entry in self.storage.get_time_entries_by_task(task_id):
            if entry.is_running:
                return entry
        return None

    def active_entry_for_task(self, task_id: int) -> Optional[schemas.TimeEntry]:
        """The running entry for a task, else its most recent paused one."""
        entries = [e for e in self.storage.get_time_entries_by_task(task_id) if not e.is_archived]
        running = [e for e in entries if e.is_running]
        if running:
            return running[0]
        paused = sorted(entries, key=lambda e: (e.end_time or e.start_time, e.id))
        return paused[-1] if paused else None

    # ---------------- transitions ----------------

    def start(self, task_id: int, notes: Optional[str] = None, user_id: Optional[int] = None) -> schemas.TimeEntry:
        self.require_task(task_id)
        if self.running_entry_for_task(task_id) is not None:
            raise TimerAlreadyRunningError(task_id)

        entry = self.storage.create_time_entry(
            schemas.TimeEntryCreate(
                task_id=task_id,
                start_time=self.clock(),
                end_time=None,
                duration=None,
                is_running=True,
                notes=notes,
                user_id=user_id,
            )
        )
        logger.info("Timer started", task_id=task_id, entry_id=entry.id)
        return entry

    def pause(self, entry_id: int) -> schemas.TimeEntry:
        entry = self.require_entry(entry_id)
        if not entry.is_running:
            raise ConflictError("Timer is not running")

        now = self.clock()
        duration = self.elapsed_seconds(entry, now)
        entry = self.storage.update_time_entry(
            entry_id, {"duration": duration, "end_time": now, "is_running": False}
        )
        logger.info("Timer paused", entry_id=entry_id, duration=duration)
        return entry

    def resume(self, entry_id: int) -> schemas.TimeEntry:
        entry = self.require_entry(entry_id)
        if entry.is_running:
            raise ConflictError("Timer is already running")
        if entry.is_archived:
            raise ConflictError("Finished entries cannot be resumed")
        if self.running_entry_for_task(entry.task_id) is not None:
            raise TimerAlreadyRunningError(entry.task_id)

        entry = self.storage.update_time_entry(
            entry_id, {"start_time": self.clock(), "end_time": None, "is_running": True}
        )
        logger.info("Timer resumed", entry_id=entry_id, accumulated=entry.duration or 0)
        return entry

    def _close(self, entry: schemas.TimeEntry, action: str) -> schemas.StopResult:
        now = self.clock()
        total = self.elapsed_seconds(entry, now)

        if total < self.min_session_seconds:
            self.storage.delete_time_entry(entry.id)
            logger.info("Short session discarded", entry_id=entry.id, duration=total, action=action)
            return schemas.StopResult(
                entry=None,
                duration=total,
                discarded=True,
                message=f"Session shorter than {self.min_session_seconds} seconds was discarded",
            )

        updated = self.storage.update_time_entry(
            entry.id,
            {"end_time": now, "duration": total, "is_running": False, "is_archived": True},
        )
        logger.info("Timer closed", entry_id=entry.id, duration=total, action=action)
        return schemas.StopResult(entry=updated, duration=total, message="Time entry saved")

    def _require_open(self, entry_id: int) -> schemas.TimeEntry:
        entry = self.require_entry(entry_id)
        if entry.is_archived and not entry.is_running:
            raise ConflictError("Time entry is already finished")
        return entry

    def stop(self, entry_id: int) -> schemas.StopResult:
        return self._close(self._require_open(entry_id), "stop")

    def finish(self, entry_id: int) -> schemas.StopResult:
        return self._close(self._require_open(entry_id), "finish")

    def finish_and_complete(self, entry_id: int, task_id: Optional[int] = None) -> schemas.TimeEntry:
        entry = self.require_entry(entry_id)
        if task_id is not None and entry.task_id != task_id:
            raise ValidationError("Time entry does not belong to this task")
        self.require_task(entry.task_id)

        now = self.clock()
        total = max(self.elapsed_seconds(entry, now), self.min_session_seconds)
        updated = self.storage.update_time_entry(
            entry_id,
            {"end_time": now, "duration": total, "is_running": False, "is_archived": True},
        )
        self.storage.complete_task(entry.task_id, now)
        logger.info("Timer finished and task completed", entry_id=entry_id, task_id=entry.task_id, duration=total)
        return updated

    def log_time(
        self,
        task_id: int,
        seconds: int,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> schemas.TimeEntry:
        """Record an already-worked block ending now."""
        if seconds <= 0:
            raise ValidationError("Logged time must be positive")
        self.require_task(task_id)

        now = self.clock()
        entry = self.storage.create_time_entry(
            schemas.TimeEntryCreate(
                task_id=task_id,
                start_time=now - timedelta(seconds=seconds),
                end_time=now,
                duration=seconds,
                is_running=False,
                notes=notes,
                user_id=user_id,
            )
        )
        logger.info("Time logged", task_id=task_id, entry_id=entry.id, duration=seconds)
        return entry
