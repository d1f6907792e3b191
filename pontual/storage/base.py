from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .. import schemas
from ..clock import utcnow
from . import analytics


class Storage(ABC):
    """Persistence contract shared by every backend.

    ``get_*`` lookups return ``None`` for missing rows. Mutations on a missing
    row raise ``NotFoundError``. Creating a second running entry for a task
    raises ``TimerAlreadyRunningError``.
    """

    # ---------------- Users ----------------

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[schemas.UserRecord]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[schemas.UserRecord]: ...

    @abstractmethod
    def get_user_by_api_key(self, api_key: str) -> Optional[schemas.UserRecord]: ...

    @abstractmethod
    def get_user_by_reset_token(self, token: str) -> Optional[schemas.UserRecord]: ...

    @abstractmethod
    def list_users(self) -> List[schemas.UserRecord]: ...

    @abstractmethod
    def count_users(self) -> int: ...

    @abstractmethod
    def create_user(self, data: schemas.UserCreate) -> schemas.UserRecord: ...

    @abstractmethod
    def update_user(self, user_id: int, updates: Dict[str, Any]) -> schemas.UserRecord: ...

    @abstractmethod
    def delete_user(self, user_id: int) -> None: ...

    # ---------------- Tasks ----------------

    @abstractmethod
    def get_all_tasks(self, now: Optional[datetime] = None) -> List[schemas.TaskWithStats]:
        """Active tasks with time totals, running-entry counts and items."""

    @abstractmethod
    def get_task(self, task_id: int) -> Optional[schemas.Task]: ...

    @abstractmethod
    def get_task_with_stats(
        self, task_id: int, now: Optional[datetime] = None
    ) -> Optional[schemas.TaskWithStats]: ...

    @abstractmethod
    def create_task(self, data: schemas.TaskCreate) -> schemas.Task: ...

    @abstractmethod
    def update_task(self, task_id: int, updates: Dict[str, Any]) -> schemas.Task: ...

    @abstractmethod
    def delete_task(self, task_id: int) -> None:
        """Delete a task and its items; refused while time entries exist."""

    def complete_task(self, task_id: int, now: Optional[datetime] = None) -> schemas.Task:
        return self.update_task(task_id, {"is_completed": True, "completed_at": now or utcnow()})

    def reopen_task(self, task_id: int) -> schemas.Task:
        return self.update_task(task_id, {"is_completed": False, "completed_at": None})

    # ---------------- Task items ----------------

    @abstractmethod
    def get_task_items(self, task_id: int) -> List[schemas.TaskItem]: ...

    @abstractmethod
    def get_task_item(self, item_id: int) -> Optional[schemas.TaskItem]: ...

    @abstractmethod
    def create_task_item(self, data: schemas.TaskItemCreate) -> schemas.TaskItem: ...

    @abstractmethod
    def update_task_item(self, item_id: int, updates: Dict[str, Any]) -> schemas.TaskItem: ...

    @abstractmethod
    def delete_task_item(self, item_id: int) -> None: ...

    @abstractmethod
    def complete_all_task_items(self, task_id: int) -> None: ...

    # ---------------- Time entries ----------------

    @abstractmethod
    def get_all_time_entries(self) -> List[schemas.TimeEntryWithTask]:
        """Every entry with its task, newest first."""

    @abstractmethod
    def get_time_entry(self, entry_id: int) -> Optional[schemas.TimeEntry]: ...

    @abstractmethod
    def get_time_entries_by_task(self, task_id: int) -> List[schemas.TimeEntry]: ...

    @abstractmethod
    def get_running_time_entries(self) -> List[schemas.TimeEntryWithTask]:
        """Entries still in play: running, or paused and not yet archived."""

    @abstractmethod
    def create_time_entry(self, data: schemas.TimeEntryCreate) -> schemas.TimeEntry: ...

    @abstractmethod
    def update_time_entry(self, entry_id: int, updates: Dict[str, Any]) -> schemas.TimeEntry: ...

    @abstractmethod
    def delete_time_entry(self, entry_id: int) -> None: ...

    @abstractmethod
    def delete_all_time_entries(self) -> int: ...

    # ---------------- Analytics ----------------

    @abstractmethod
    def _analytics_snapshot(self) -> Tuple[List[schemas.Task], List[schemas.TimeEntry]]:
        """All tasks (any state) and all time entries."""

    def get_dashboard_stats(self, now: Optional[datetime] = None) -> schemas.DashboardStats:
        tasks, entries = self._analytics_snapshot()
        return analytics.dashboard_stats(tasks, entries, now or utcnow())

    def get_time_by_task(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> List[schemas.TimeByTask]:
        tasks, entries = self._analytics_snapshot()
        return analytics.time_by_task(tasks, entries, now or utcnow(), start, end)

    def get_daily_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> List[schemas.DailyStat]:
        now = now or utcnow()
        end = end or now
        start = start or end - timedelta(days=7)
        _, entries = self._analytics_snapshot()
        return analytics.daily_stats(entries, now, start, end)

    # ---------------- WhatsApp ----------------

    @abstractmethod
    def get_whatsapp_integration(self) -> Optional[schemas.WhatsappIntegration]: ...

    @abstractmethod
    def create_whatsapp_integration(
        self, data: schemas.WhatsappIntegrationCreate
    ) -> schemas.WhatsappIntegration: ...

    @abstractmethod
    def update_whatsapp_integration(self, updates: Dict[str, Any]) -> schemas.WhatsappIntegration: ...

    @abstractmethod
    def delete_whatsapp_integration(self) -> None: ...

    @abstractmethod
    def create_whatsapp_log(self, data: schemas.WhatsappLogCreate) -> schemas.WhatsappLog: ...

    @abstractmethod
    def get_whatsapp_logs(self, limit: int = 50) -> List[schemas.WhatsappLog]:
        """Most recent log rows first."""
