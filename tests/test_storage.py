from datetime import datetime, timedelta

import pytest

from pontual import schemas
from pontual.config import Settings
from pontual.errors import ConflictError, NotFoundError, TimerAlreadyRunningError
from pontual.storage import MemoryStorage, SqlStorage, create_storage


def _entry(task_id, start, seconds=None, running=False):
    return schemas.TimeEntryCreate(
        task_id=task_id,
        start_time=start,
        end_time=None if running else start + timedelta(seconds=seconds),
        duration=None if running else seconds,
        is_running=running,
    )


# ---------------- tasks & items ----------------

def test_task_defaults(storage, make_task):
    task = make_task()
    assert task.color == "#3B82F6"
    assert task.is_active
    assert not task.is_completed
    assert task.source == "sistema"


def test_get_missing_returns_none(storage):
    assert storage.get_task(1) is None
    assert storage.get_task_with_stats(1) is None
    assert storage.get_time_entry(1) is None
    assert storage.get_task_item(1) is None


def test_update_missing_raises(storage):
    with pytest.raises(NotFoundError):
        storage.update_task(42, {"name": "x"})
    with pytest.raises(NotFoundError):
        storage.update_time_entry(42, {"notes": "x"})


def test_all_tasks_excludes_inactive(storage, make_task):
    make_task("on")
    make_task("off", is_active=False)
    assert [t.name for t in storage.get_all_tasks()] == ["on"]


def test_complete_and_reopen(storage, make_task, clock):
    task = make_task()
    done = storage.complete_task(task.id, clock.now)
    assert done.is_completed and done.completed_at == clock.now

    reopened = storage.reopen_task(task.id)
    assert not reopened.is_completed and reopened.completed_at is None


def test_delete_task_with_entries_is_refused(storage, make_task, clock):
    task = make_task()
    storage.create_time_entry(_entry(task.id, clock.now, 120))

    with pytest.raises(ConflictError):
        storage.delete_task(task.id)
    assert storage.get_task(task.id) is not None


def test_delete_task_cascades_items(storage, make_task):
    task = make_task()
    item = storage.create_task_item(schemas.TaskItemCreate(task_id=task.id, title="step"))

    storage.delete_task(task.id)

    assert storage.get_task(task.id) is None
    assert storage.get_task_item(item.id) is None


def test_items_crud_and_complete_all(storage, make_task):
    task = make_task()
    a = storage.create_task_item(schemas.TaskItemCreate(task_id=task.id, title="a"))
    storage.create_task_item(schemas.TaskItemCreate(task_id=task.id, title="b"))

    assert storage.update_task_item(a.id, {"title": "a2"}).title == "a2"
    storage.complete_all_task_items(task.id)
    assert all(i.completed for i in storage.get_task_items(task.id))

    storage.delete_task_item(a.id)
    assert [i.title for i in storage.get_task_items(task.id)] == ["b"]


def test_item_for_missing_task(storage):
    with pytest.raises(NotFoundError):
        storage.create_task_item(schemas.TaskItemCreate(task_id=9, title="x"))


def test_task_with_stats_counts_running_time(storage, make_task, clock):
    task = make_task()
    storage.create_task_item(schemas.TaskItemCreate(task_id=task.id, title="x"))
    storage.create_time_entry(_entry(task.id, clock.now - timedelta(hours=2), 3600))
    storage.create_time_entry(_entry(task.id, clock.now - timedelta(minutes=10), running=True))

    stats = storage.get_task_with_stats(task.id, clock.now)
    assert stats.total_time == 3600 + 600
    assert stats.active_entries == 1
    assert len(stats.items) == 1


# ---------------- time entries ----------------

def test_second_running_entry_is_rejected_by_storage(storage, make_task, clock):
    task = make_task()
    storage.create_time_entry(_entry(task.id, clock.now, running=True))

    with pytest.raises(TimerAlreadyRunningError):
        storage.create_time_entry(_entry(task.id, clock.now, running=True))


def test_running_flag_update_respects_uniqueness(storage, make_task, clock):
    task = make_task()
    storage.create_time_entry(_entry(task.id, clock.now, running=True))
    paused = storage.create_time_entry(_entry(task.id, clock.now, 120))

    with pytest.raises(TimerAlreadyRunningError):
        storage.update_time_entry(paused.id, {"is_running": True, "end_time": None})


def test_running_index_catches_writes_that_skip_the_lookup(monkeypatch, clock):
    sql = SqlStorage.from_url("sqlite://")
    monkeypatch.setattr(sql, "_running_for", lambda db, task_id, exclude_id=None: None)
    task = sql.create_task(schemas.TaskCreate(name="Corrida"))
    sql.create_time_entry(_entry(task.id, clock.now, running=True))
    paused = sql.create_time_entry(_entry(task.id, clock.now, 120))

    with pytest.raises(TimerAlreadyRunningError):
        sql.create_time_entry(_entry(task.id, clock.now, running=True))
    with pytest.raises(TimerAlreadyRunningError) as excinfo:
        sql.update_time_entry(paused.id, {"is_running": True, "end_time": None})
    assert excinfo.value.task_id == task.id

    assert [e.is_running for e in sql.get_time_entries_by_task(task.id)] == [True, False]


def test_entry_for_missing_task(storage, clock):
    with pytest.raises(NotFoundError):
        storage.create_time_entry(_entry(77, clock.now, 120))


def test_manual_entries_are_archived(storage, make_task, clock):
    task = make_task()
    closed = storage.create_time_entry(_entry(task.id, clock.now, 120))
    running = storage.create_time_entry(_entry(task.id, clock.now, running=True))

    assert closed.is_archived
    assert not running.is_archived
    assert [e.id for e in storage.get_running_time_entries()] == [running.id]


def test_all_entries_newest_first_with_task(storage, make_task, clock):
    task = make_task()
    first = storage.create_time_entry(_entry(task.id, clock.now, 120))
    second = storage.create_time_entry(_entry(task.id, clock.now, 180))

    entries = storage.get_all_time_entries()
    assert [e.id for e in entries] == [second.id, first.id]
    assert entries[0].task.name == task.name


def test_delete_all_time_entries(storage, make_task, clock):
    task = make_task()
    for _ in range(3):
        storage.create_time_entry(_entry(task.id, clock.now, 120))
    assert storage.delete_all_time_entries() == 3
    assert storage.get_all_time_entries() == []


# ---------------- analytics ----------------

def test_dashboard_stats(storage, make_task, clock):
    now = clock.now
    today = make_task("today", estimated_hours=1.0)
    overdue = make_task("late", deadline=now - timedelta(days=1))
    make_task("tomorrow", deadline=datetime(now.year, now.month, now.day) + timedelta(days=1, hours=9))
    near = make_task("near", estimated_hours=1.0)
    done = make_task("done")
    storage.complete_task(done.id, now)

    storage.create_time_entry(_entry(today.id, now - timedelta(hours=2), 5400))  # over budget
    storage.create_time_entry(_entry(near.id, now - timedelta(days=3), 2700))  # 75% of budget
    storage.create_time_entry(_entry(overdue.id, now - timedelta(days=20), 600))
    storage.create_time_entry(_entry(done.id, now - timedelta(minutes=5), running=True))

    stats = storage.get_dashboard_stats(now)

    assert stats.today_time == 5400 + 300
    assert stats.week_time == 5400 + 300 + 2700
    assert stats.month_time == 5400 + 300  # "near" was logged in June
    assert stats.active_tasks == 4
    assert stats.completed_tasks == 1
    assert stats.overdue_tasks == 1
    assert stats.over_time_tasks == 1
    assert stats.due_today_tasks == 0
    assert stats.due_tomorrow_tasks == 1
    assert stats.nearing_limit_tasks == 1


def test_completed_tasks_leave_alert_counts(storage, make_task, clock):
    task = make_task("late", deadline=clock.now - timedelta(days=2))
    storage.complete_task(task.id, clock.now)
    assert storage.get_dashboard_stats(clock.now).overdue_tasks == 0


def test_time_by_task_sorted_and_filtered(storage, make_task, clock):
    now = clock.now
    a, b = make_task("a"), make_task("b")
    storage.create_time_entry(_entry(a.id, now - timedelta(hours=3), 600))
    storage.create_time_entry(_entry(b.id, now - timedelta(hours=2), 1800))
    storage.create_time_entry(_entry(a.id, now - timedelta(days=10), 9999))

    rows = storage.get_time_by_task(start=now - timedelta(days=1), end=now, now=now)
    assert [(r.task.name, r.total_time) for r in rows] == [("b", 1800), ("a", 600)]


def test_daily_stats_fills_empty_days(storage, make_task, clock):
    now = clock.now
    task = make_task()
    storage.create_time_entry(_entry(task.id, now - timedelta(days=2), 1200))
    storage.create_time_entry(_entry(task.id, now - timedelta(hours=1), 300))

    days = storage.get_daily_stats(now=now)

    assert len(days) == 8
    by_date = {d.date: d.total_time for d in days}
    assert by_date[(now - timedelta(days=2)).date().isoformat()] == 1200
    assert by_date[now.date().isoformat()] == 300
    assert sum(by_date.values()) == 1500


# ---------------- users ----------------

def _user(username="ana", email="ana@pontual.com.br", api_key=None):
    return schemas.UserCreate(
        username=username, password_hash="x", email=email, full_name="Ana Souza", api_key=api_key
    )


def test_user_lookup_and_uniqueness(storage):
    user = storage.create_user(_user(api_key="pk_abc"))
    assert storage.get_user_by_username("ana").id == user.id
    assert storage.get_user_by_api_key("pk_abc").id == user.id
    assert storage.get_user_by_api_key("") is None
    assert storage.count_users() == 1

    with pytest.raises(ConflictError):
        storage.create_user(_user(email="other@pontual.com.br"))


def test_user_update_and_delete(storage):
    user = storage.create_user(_user())
    updated = storage.update_user(user.id, {"reset_token": "tok", "role": "admin"})
    assert updated.role == "admin"
    assert storage.get_user_by_reset_token("tok").id == user.id

    storage.delete_user(user.id)
    assert storage.get_user(user.id) is None
    with pytest.raises(NotFoundError):
        storage.delete_user(user.id)


# ---------------- whatsapp ----------------

def _integration(**overrides):
    fields = dict(
        instance_name="pontual",
        api_url="https://evo.example.com/",
        api_key="key",
        phone_number="5531988887777",
        authorized_numbers=["5531999999999@c.us", " 5531911112222 "],
    )
    fields.update(overrides)
    return schemas.WhatsappIntegrationCreate(**fields)


def test_integration_lifecycle(storage):
    assert storage.get_whatsapp_integration() is None
    created = storage.create_whatsapp_integration(_integration())
    assert created.api_url == "https://evo.example.com"
    assert created.authorized_numbers == ["5531999999999@c.us", "5531911112222"]

    with pytest.raises(ConflictError):
        storage.create_whatsapp_integration(_integration())

    updated = storage.update_whatsapp_integration({"authorized_numbers": [], "response_mode": "group"})
    assert updated.authorized_numbers == []
    assert updated.response_mode == "group"

    storage.delete_whatsapp_integration()
    assert storage.get_whatsapp_integration() is None


def test_logs_newest_first_and_limited(storage):
    integration = storage.create_whatsapp_integration(_integration())
    for n in range(5):
        storage.create_whatsapp_log(
            schemas.WhatsappLogCreate(integration_id=integration.id, event_type="COMMAND_PROCESSED", command=str(n))
        )
    logs = storage.get_whatsapp_logs(limit=3)
    assert [log.command for log in logs] == ["4", "3", "2"]


# ---------------- factory ----------------

def test_create_storage_memory():
    assert isinstance(create_storage(Settings(storage_backend="memory", _env_file=None)), MemoryStorage)


def test_create_storage_sqlite():
    settings = Settings(storage_backend="sqlite", database_url="sqlite://", _env_file=None)
    assert isinstance(create_storage(settings), SqlStorage)


def test_create_storage_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_storage(Settings(storage_backend="redis", _env_file=None))
