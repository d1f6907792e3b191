from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .. import schemas
from ..clock import utcnow
from ..errors import ConflictError, NotFoundError, TimerAlreadyRunningError
from . import analytics
from .base import Storage


class MemoryStorage(Storage):
    """Process-local storage, used by tests and throwaway deployments."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[int, schemas.UserRecord] = {}
        self._tasks: Dict[int, schemas.Task] = {}
        self._items: Dict[int, schemas.TaskItem] = {}
        self._entries: Dict[int, schemas.TimeEntry] = {}
        self._integration: Optional[schemas.WhatsappIntegration] = None
        self._logs: List[schemas.WhatsappLog] = []
        self._ids = {
            name: itertools.count(1)
            for name in ("user", "task", "item", "entry", "integration", "log")
        }

    def _next_id(self, kind: str) -> int:
        return next(self._ids[kind])

    # ---------------- Users ----------------

    def get_user(self, user_id):
        return self._users.get(user_id)

    def get_user_by_username(self, username):
        return next((u for u in self._users.values() if u.username == username), None)

    def get_user_by_api_key(self, api_key):
        if not api_key:
            return None
        return next((u for u in self._users.values() if u.api_key == api_key), None)

    def get_user_by_reset_token(self, token):
        if not token:
            return None
        return next((u for u in self._users.values() if u.reset_token == token), None)

    def list_users(self):
        return sorted(self._users.values(), key=lambda u: u.id)

    def count_users(self):
        return len(self._users)

    def _check_unique_user(self, user_id: Optional[int], username=None, email=None, api_key=None):
        for other in self._users.values():
            if other.id == user_id:
                continue
            if username and other.username == username:
                raise ConflictError("Username already registered")
            if email and other.email == email:
                raise ConflictError("Email already registered")
            if api_key and other.api_key == api_key:
                raise ConflictError("API key collision")

    def create_user(self, data):
        with self._lock:
            self._check_unique_user(None, data.username, data.email, data.api_key)
            now = utcnow()
            user = schemas.UserRecord(
                id=self._next_id("user"),
                created_at=now,
                updated_at=now,
                **data.model_dump(),
            )
            self._users[user.id] = user
            return user

    def update_user(self, user_id, updates):
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError("User not found")
            self._check_unique_user(
                user_id, updates.get("username"), updates.get("email"), updates.get("api_key")
            )
            user = user.model_copy(update={**updates, "updated_at": utcnow()})
            self._users[user_id] = user
            return user

    def delete_user(self, user_id):
        with self._lock:
            if self._users.pop(user_id, None) is None:
                raise NotFoundError("User not found")

    # ---------------- Tasks ----------------

    def _with_stats(self, task: schemas.Task, now: datetime) -> schemas.TaskWithStats:
        entries = [e for e in self._entries.values() if e.task_id == task.id]
        return analytics.task_with_stats(task, entries, self.get_task_items(task.id), now)

    def get_all_tasks(self, now=None):
        now = now or utcnow()
        tasks = sorted((t for t in self._tasks.values() if t.is_active), key=lambda t: t.id)
        return [self._with_stats(t, now) for t in tasks]

    def get_task(self, task_id):
        return self._tasks.get(task_id)

    def get_task_with_stats(self, task_id, now=None):
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return self._with_stats(task, now or utcnow())

    def create_task(self, data):
        with self._lock:
            task = schemas.Task(
                id=self._next_id("task"),
                is_completed=False,
                completed_at=None,
                created_at=utcnow(),
                **data.model_dump(),
            )
            self._tasks[task.id] = task
            return task

    def update_task(self, task_id, updates):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError("Task not found")
            task = task.model_copy(update=updates)
            self._tasks[task_id] = task
            return task

    def delete_task(self, task_id):
        with self._lock:
            if task_id not in self._tasks:
                raise NotFoundError("Task not found")
            if any(e.task_id == task_id for e in self._entries.values()):
                raise ConflictError(
                    "Cannot delete a task that has time entries; delete the entries first"
                )
            for item_id in [i.id for i in self._items.values() if i.task_id == task_id]:
                del self._items[item_id]
            del self._tasks[task_id]

    # ---------------- Task items ----------------

    def get_task_items(self, task_id):
        return sorted((i for i in self._items.values() if i.task_id == task_id), key=lambda i: i.id)

    def get_task_item(self, item_id):
        return self._items.get(item_id)

    def create_task_item(self, data):
        with self._lock:
            if data.task_id not in self._tasks:
                raise NotFoundError("Task not found")
            item = schemas.TaskItem(id=self._next_id("item"), created_at=utcnow(), **data.model_dump())
            self._items[item.id] = item
            return item

    def update_task_item(self, item_id, updates):
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise NotFoundError("Task item not found")
            item = item.model_copy(update=updates)
            self._items[item_id] = item
            return item

    def delete_task_item(self, item_id):
        with self._lock:
            if self._items.pop(item_id, None) is None:
                raise NotFoundError("Task item not found")

    def complete_all_task_items(self, task_id):
        with self._lock:
            if task_id not in self._tasks:
                raise NotFoundError("Task not found")
            for item in self.get_task_items(task_id):
                self._items[item.id] = item.model_copy(update={"completed": True})

    # ---------------- Time entries ----------------

    def _attach_task(self, entry: schemas.TimeEntry) -> Optional[schemas.TimeEntryWithTask]:
        task = self._tasks.get(entry.task_id)
        if task is None:
            return None
        return schemas.TimeEntryWithTask(**entry.model_dump(), task=task)

    def _guard_single_running(self, task_id: int, entry_id: Optional[int] = None):
        for other in self._entries.values():
            if other.task_id == task_id and other.is_running and other.id != entry_id:
                logger.warning("Rejected second running entry", task_id=task_id, running_entry=other.id)
                raise TimerAlreadyRunningError(task_id)

    def get_all_time_entries(self):
        entries = sorted(self._entries.values(), key=lambda e: (e.created_at, e.id), reverse=True)
        return [w for w in map(self._attach_task, entries) if w is not None]

    def get_time_entry(self, entry_id):
        return self._entries.get(entry_id)

    def get_time_entries_by_task(self, task_id):
        return sorted((e for e in self._entries.values() if e.task_id == task_id), key=lambda e: e.id)

    def get_running_time_entries(self):
        entries = sorted(
            (e for e in self._entries.values() if e.is_running or not e.is_archived),
            key=lambda e: (e.start_time, e.id),
        )
        return [w for w in map(self._attach_task, entries) if w is not None]

    def create_time_entry(self, data):
        with self._lock:
            if data.task_id not in self._tasks:
                raise NotFoundError("Task not found")
            if data.is_running:
                self._guard_single_running(data.task_id)
            entry = schemas.TimeEntry(
                id=self._next_id("entry"),
                created_at=utcnow(),
                is_archived=not data.is_running,
                **data.model_dump(),
            )
            self._entries[entry.id] = entry
            return entry

    def update_time_entry(self, entry_id, updates):
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise NotFoundError("Time entry not found")
            if updates.get("is_running") and not entry.is_running:
                self._guard_single_running(entry.task_id, entry_id)
            entry = entry.model_copy(update=updates)
            self._entries[entry_id] = entry
            return entry

    def delete_time_entry(self, entry_id):
        with self._lock:
            if self._entries.pop(entry_id, None) is None:
                raise NotFoundError("Time entry not found")

    def delete_all_time_entries(self):
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    # ---------------- Analytics ----------------

    def _analytics_snapshot(self) -> Tuple[List[schemas.Task], List[schemas.TimeEntry]]:
        return list(self._tasks.values()), list(self._entries.values())

    # ---------------- WhatsApp ----------------

    def get_whatsapp_integration(self):
        return self._integration

    def create_whatsapp_integration(self, data):
        with self._lock:
            if self._integration is not None:
                raise ConflictError("WhatsApp integration already configured")
            now = utcnow()
            self._integration = schemas.WhatsappIntegration(
                id=self._next_id("integration"),
                created_at=now,
                updated_at=now,
                **data.model_dump(),
            )
            return self._integration

    def update_whatsapp_integration(self, updates: Dict[str, Any]):
        with self._lock:
            if self._integration is None:
                raise NotFoundError("WhatsApp integration not configured")
            self._integration = self._integration.model_copy(update={**updates, "updated_at": utcnow()})
            return self._integration

    def delete_whatsapp_integration(self):
        with self._lock:
            if self._integration is None:
                raise NotFoundError("WhatsApp integration not configured")
            self._integration = None
            self._logs.clear()

    def create_whatsapp_log(self, data):
        with self._lock:
            log = schemas.WhatsappLog(id=self._next_id("log"), timestamp=utcnow(), **data.model_dump())
            self._logs.append(log)
            return log

    def get_whatsapp_logs(self, limit=50):
        return list(reversed(self._logs))[:limit]
