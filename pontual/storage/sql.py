from __future__ import annotations

import json
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..clock import utcnow
from ..db import create_db_engine, init_schema, make_session_factory
from ..errors import ConflictError, NotFoundError, TimerAlreadyRunningError
from . import analytics
from .base import Storage


def _dump_numbers(numbers: Optional[List[str]]) -> Optional[str]:
    return None if numbers is None else json.dumps(numbers)


def _load_numbers(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Unreadable authorized_numbers column, treating as unset")
        return None
    return [str(n) for n in value] if isinstance(value, list) else None


def _integration_out(row: models.WhatsappIntegration) -> schemas.WhatsappIntegration:
    return schemas.WhatsappIntegration(
        id=row.id,
        instance_name=row.instance_name,
        api_url=row.api_url,
        api_key=row.api_key,
        phone_number=row.phone_number,
        is_active=row.is_active,
        webhook_url=row.webhook_url,
        authorized_numbers=_load_numbers(row.authorized_numbers),
        response_mode=row.response_mode,
        allowed_group_jid=row.allowed_group_jid,
        last_connection=row.last_connection,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply(row, updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        setattr(row, key, value)


class SqlStorage(Storage):
    """SQLAlchemy backend, serving both the SQLite file and hosted PostgreSQL."""

    def __init__(self, engine: Engine, create_schema: bool = True):
        self.engine = engine
        self.SessionLocal = make_session_factory(engine)
        if create_schema:
            init_schema(engine)

    @classmethod
    def from_url(cls, url: str, create_schema: bool = True) -> "SqlStorage":
        return cls(create_db_engine(url), create_schema=create_schema)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ---------------- Users ----------------

    def get_user(self, user_id):
        with self.session() as db:
            row = db.get(models.User, user_id)
            return schemas.UserRecord.model_validate(row) if row else None

    def _user_by(self, column, value) -> Optional[schemas.UserRecord]:
        if not value:
            return None
        with self.session() as db:
            row = db.query(models.User).filter(column == value).first()
            return schemas.UserRecord.model_validate(row) if row else None

    def get_user_by_username(self, username):
        return self._user_by(models.User.username, username)

    def get_user_by_api_key(self, api_key):
        return self._user_by(models.User.api_key, api_key)

    def get_user_by_reset_token(self, token):
        return self._user_by(models.User.reset_token, token)

    def list_users(self):
        with self.session() as db:
            rows = db.query(models.User).order_by(models.User.id.asc()).all()
            return [schemas.UserRecord.model_validate(r) for r in rows]

    def count_users(self):
        with self.session() as db:
            return db.query(models.User).count()

    def create_user(self, data):
        try:
            with self.session() as db:
                row = models.User(**data.model_dump())
                db.add(row)
                db.flush()
                return schemas.UserRecord.model_validate(row)
        except IntegrityError as exc:
            raise ConflictError("Username or email already registered") from exc

    def update_user(self, user_id, updates):
        try:
            with self.session() as db:
                row = db.get(models.User, user_id)
                if row is None:
                    raise NotFoundError("User not found")
                _apply(row, updates)
                db.flush()
                return schemas.UserRecord.model_validate(row)
        except IntegrityError as exc:
            raise ConflictError("Username or email already registered") from exc

    def delete_user(self, user_id):
        with self.session() as db:
            row = db.get(models.User, user_id)
            if row is None:
                raise NotFoundError("User not found")
            db.delete(row)

    # ---------------- Tasks ----------------

    def get_all_tasks(self, now=None):
        now = now or utcnow()
        with self.session() as db:
            rows = (
                db.query(models.Task)
                .filter(models.Task.is_active.is_(True))
                .order_by(models.Task.id.asc())
                .all()
            )
            ids = [r.id for r in rows]
            entries = defaultdict(list)
            items = defaultdict(list)
            if ids:
                for e in db.query(models.TimeEntry).filter(models.TimeEntry.task_id.in_(ids)).all():
                    entries[e.task_id].append(schemas.TimeEntry.model_validate(e))
                for i in (
                    db.query(models.TaskItem)
                    .filter(models.TaskItem.task_id.in_(ids))
                    .order_by(models.TaskItem.id.asc())
                    .all()
                ):
                    items[i.task_id].append(schemas.TaskItem.model_validate(i))
            return [
                analytics.task_with_stats(
                    schemas.Task.model_validate(r), entries[r.id], items[r.id], now
                )
                for r in rows
            ]

    def get_task(self, task_id):
        with self.session() as db:
            row = db.get(models.Task, task_id)
            return schemas.Task.model_validate(row) if row else None

    def get_task_with_stats(self, task_id, now=None):
        with self.session() as db:
            row = db.get(models.Task, task_id)
            if row is None:
                return None
            return analytics.task_with_stats(
                schemas.Task.model_validate(row),
                [schemas.TimeEntry.model_validate(e) for e in row.time_entries],
                [schemas.TaskItem.model_validate(i) for i in row.items],
                now or utcnow(),
            )

    def create_task(self, data):
        with self.session() as db:
            row = models.Task(**data.model_dump())
            db.add(row)
            db.flush()
            return schemas.Task.model_validate(row)

    def update_task(self, task_id, updates):
        with self.session() as db:
            row = db.get(models.Task, task_id)
            if row is None:
                raise NotFoundError("Task not found")
            _apply(row, updates)
            db.flush()
            return schemas.Task.model_validate(row)

    def delete_task(self, task_id):
        with self.session() as db:
            row = db.get(models.Task, task_id)
            if row is None:
                raise NotFoundError("Task not found")
            has_entries = (
                db.query(models.TimeEntry.id).filter(models.TimeEntry.task_id == task_id).first()
            )
            if has_entries:
                raise ConflictError(
                    "Cannot delete a task that has time entries; delete the entries first"
                )
            db.delete(row)

    # ---------------- Task items ----------------

    def get_task_items(self, task_id):
        with self.session() as db:
            rows = (
                db.query(models.TaskItem)
                .filter(models.TaskItem.task_id == task_id)
                .order_by(models.TaskItem.id.asc())
                .all()
            )
            return [schemas.TaskItem.model_validate(r) for r in rows]

    def get_task_item(self, item_id):
        with self.session() as db:
            row = db.get(models.TaskItem, item_id)
            return schemas.TaskItem.model_validate(row) if row else None

    def create_task_item(self, data):
        with self.session() as db:
            if db.get(models.Task, data.task_id) is None:
                raise NotFoundError("Task not found")
            row = models.TaskItem(**data.model_dump())
            db.add(row)
            db.flush()
            return schemas.TaskItem.model_validate(row)

    def update_task_item(self, item_id, updates):
        with self.session() as db:
            row = db.get(models.TaskItem, item_id)
            if row is None:
                raise NotFoundError("Task item not found")
            _apply(row, updates)
            db.flush()
            return schemas.TaskItem.model_validate(row)

    def delete_task_item(self, item_id):
        with self.session() as db:
            row = db.get(models.TaskItem, item_id)
            if row is None:
                raise NotFoundError("Task item not found")
            db.delete(row)

    def complete_all_task_items(self, task_id):
        with self.session() as db:
            if db.get(models.Task, task_id) is None:
                raise NotFoundError("Task not found")
            db.query(models.TaskItem).filter(models.TaskItem.task_id == task_id).update(
                {models.TaskItem.completed: True}, synchronize_session=False
            )

    # ---------------- Time entries ----------------

    @staticmethod
    def _with_task(row: models.TimeEntry) -> schemas.TimeEntryWithTask:
        return schemas.TimeEntryWithTask(
            **schemas.TimeEntry.model_validate(row).model_dump(),
            task=schemas.Task.model_validate(row.task),
        )

    @staticmethod
    def _running_for(db: Session, task_id: int, exclude_id: Optional[int] = None):
        q = db.query(models.TimeEntry).filter(
            models.TimeEntry.task_id == task_id, models.TimeEntry.is_running.is_(True)
        )
        if exclude_id is not None:
            q = q.filter(models.TimeEntry.id != exclude_id)
        return q.first()

    def get_all_time_entries(self):
        with self.session() as db:
            rows = (
                db.query(models.TimeEntry)
                .join(models.Task)
                .order_by(models.TimeEntry.created_at.desc(), models.TimeEntry.id.desc())
                .all()
            )
            return [self._with_task(r) for r in rows]

    def get_time_entry(self, entry_id):
        with self.session() as db:
            row = db.get(models.TimeEntry, entry_id)
            return schemas.TimeEntry.model_validate(row) if row else None

    def get_time_entries_by_task(self, task_id):
        with self.session() as db:
            rows = (
                db.query(models.TimeEntry)
                .filter(models.TimeEntry.task_id == task_id)
                .order_by(models.TimeEntry.id.asc())
                .all()
            )
            return [schemas.TimeEntry.model_validate(r) for r in rows]

    def get_running_time_entries(self):
        with self.session() as db:
            rows = (
                db.query(models.TimeEntry)
                .join(models.Task)
                .filter(
                    (models.TimeEntry.is_running.is_(True))
                    | (models.TimeEntry.is_archived.is_(False))
                )
                .order_by(models.TimeEntry.start_time.asc(), models.TimeEntry.id.asc())
                .all()
            )
            return [self._with_task(r) for r in rows]

    def create_time_entry(self, data):
        try:
            with self.session() as db:
                if db.get(models.Task, data.task_id) is None:
                    raise NotFoundError("Task not found")
                if data.is_running and self._running_for(db, data.task_id) is not None:
                    raise TimerAlreadyRunningError(data.task_id)
                row = models.TimeEntry(**data.model_dump(), is_archived=not data.is_running)
                db.add(row)
                db.flush()
                return schemas.TimeEntry.model_validate(row)
        except IntegrityError as exc:
            # lost the race against a concurrent start
            logger.warning("Running-entry index rejected insert", task_id=data.task_id)
            raise TimerAlreadyRunningError(data.task_id) from exc

    def update_time_entry(self, entry_id, updates):
        task_id = None
        try:
            with self.session() as db:
                row = db.get(models.TimeEntry, entry_id)
                if row is None:
                    raise NotFoundError("Time entry not found")
                task_id = row.task_id
                if updates.get("is_running") and not row.is_running:
                    if self._running_for(db, row.task_id, exclude_id=entry_id) is not None:
                        raise TimerAlreadyRunningError(row.task_id)
                _apply(row, updates)
                db.flush()
                return schemas.TimeEntry.model_validate(row)
        except IntegrityError as exc:
            logger.warning("Running-entry index rejected update", entry_id=entry_id)
            raise TimerAlreadyRunningError(task_id) from exc

    def delete_time_entry(self, entry_id):
        with self.session() as db:
            row = db.get(models.TimeEntry, entry_id)
            if row is None:
                raise NotFoundError("Time entry not found")
            db.delete(row)

    def delete_all_time_entries(self):
        with self.session() as db:
            return db.query(models.TimeEntry).delete(synchronize_session=False)

    # ---------------- Analytics ----------------

    def _analytics_snapshot(self):
        with self.session() as db:
            tasks = [schemas.Task.model_validate(r) for r in db.query(models.Task).all()]
            entries = [schemas.TimeEntry.model_validate(r) for r in db.query(models.TimeEntry).all()]
            return tasks, entries

    # ---------------- WhatsApp ----------------

    def get_whatsapp_integration(self):
        with self.session() as db:
            row = db.query(models.WhatsappIntegration).order_by(models.WhatsappIntegration.id.asc()).first()
            return _integration_out(row) if row else None

    def create_whatsapp_integration(self, data):
        with self.session() as db:
            if db.query(models.WhatsappIntegration.id).first() is not None:
                raise ConflictError("WhatsApp integration already configured")
            values = data.model_dump()
            values["authorized_numbers"] = _dump_numbers(values.get("authorized_numbers"))
            row = models.WhatsappIntegration(**values)
            db.add(row)
            db.flush()
            return _integration_out(row)

    def update_whatsapp_integration(self, updates):
        with self.session() as db:
            row = db.query(models.WhatsappIntegration).order_by(models.WhatsappIntegration.id.asc()).first()
            if row is None:
                raise NotFoundError("WhatsApp integration not configured")
            updates = dict(updates)
            if "authorized_numbers" in updates:
                updates["authorized_numbers"] = _dump_numbers(updates["authorized_numbers"])
            _apply(row, updates)
            row.updated_at = utcnow()
            db.flush()
            return _integration_out(row)

    def delete_whatsapp_integration(self):
        with self.session() as db:
            row = db.query(models.WhatsappIntegration).order_by(models.WhatsappIntegration.id.asc()).first()
            if row is None:
                raise NotFoundError("WhatsApp integration not configured")
            db.query(models.WhatsappLog).filter(models.WhatsappLog.integration_id == row.id).delete(
                synchronize_session=False
            )
            db.delete(row)

    def create_whatsapp_log(self, data):
        with self.session() as db:
            row = models.WhatsappLog(**data.model_dump())
            db.add(row)
            db.flush()
            return schemas.WhatsappLog.model_validate(row)

    def get_whatsapp_logs(self, limit=50):
        with self.session() as db:
            rows = (
                db.query(models.WhatsappLog)
                .order_by(models.WhatsappLog.timestamp.desc(), models.WhatsappLog.id.desc())
                .limit(limit)
                .all()
            )
            return [schemas.WhatsappLog.model_validate(r) for r in rows]
