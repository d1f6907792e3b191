"""Read-side aggregations shared by every storage backend.

Backends hand plain lists of tasks and time entries to these functions, which
keeps dashboard numbers identical no matter where the rows live.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from .. import schemas
from ..clock import seconds_between

NEARING_LIMIT_LOW = 0.70
NEARING_LIMIT_HIGH = 0.85


def entry_elapsed(entry: schemas.TimeEntry, now: datetime) -> int:
    """Accumulated seconds plus the live session for running entries."""
    total = entry.duration or 0
    if entry.is_running:
        total += seconds_between(entry.start_time, now)
    return total


def total_time(entries: Iterable[schemas.TimeEntry], now: datetime) -> int:
    return sum(entry_elapsed(e, now) for e in entries)


def task_with_stats(
    task: schemas.Task,
    entries: Sequence[schemas.TimeEntry],
    items: Sequence[schemas.TaskItem],
    now: datetime,
) -> schemas.TaskWithStats:
    return schemas.TaskWithStats(
        **task.model_dump(),
        total_time=total_time(entries, now),
        active_entries=sum(1 for e in entries if e.is_running),
        items=list(items),
    )


def _day_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day)


def _is_open(task: schemas.Task) -> bool:
    return task.is_active and not task.is_completed


def _budget_seconds(task: schemas.Task) -> Optional[int]:
    if not task.estimated_hours:
        return None
    return int(task.estimated_hours * 3600)


def _deadline_between(task: schemas.Task, start: datetime, end: datetime) -> bool:
    return task.deadline is not None and start <= task.deadline < end


def is_overdue(task: schemas.Task, now: datetime) -> bool:
    return _is_open(task) and task.deadline is not None and task.deadline < now


def is_over_budget(task: schemas.Task, elapsed: int) -> bool:
    budget = _budget_seconds(task)
    return _is_open(task) and budget is not None and elapsed > budget


def is_nearing_limit(task: schemas.Task, elapsed: int) -> bool:
    budget = _budget_seconds(task)
    if not _is_open(task) or budget is None:
        return False
    return budget * NEARING_LIMIT_LOW <= elapsed <= budget * NEARING_LIMIT_HIGH


def is_due_on(task: schemas.Task, day_start: datetime) -> bool:
    return _is_open(task) and _deadline_between(task, day_start, day_start + timedelta(days=1))


def dashboard_stats(
    tasks: Sequence[schemas.Task],
    entries: Sequence[schemas.TimeEntry],
    now: datetime,
) -> schemas.DashboardStats:
    today = _day_start(now)
    week_start = now - timedelta(days=7)
    month_start = datetime(now.year, now.month, 1)

    stats = schemas.DashboardStats()
    by_task: Dict[int, int] = defaultdict(int)
    for entry in entries:
        elapsed = entry_elapsed(entry, now)
        by_task[entry.task_id] += elapsed
        if entry.start_time >= today:
            stats.today_time += elapsed
        if entry.start_time >= week_start:
            stats.week_time += elapsed
        if entry.start_time >= month_start:
            stats.month_time += elapsed

    tomorrow = today + timedelta(days=1)
    for task in tasks:
        elapsed = by_task.get(task.id, 0)
        if _is_open(task):
            stats.active_tasks += 1
        if task.is_completed:
            stats.completed_tasks += 1
        if is_overdue(task, now):
            stats.overdue_tasks += 1
        if is_over_budget(task, elapsed):
            stats.over_time_tasks += 1
        if is_due_on(task, today):
            stats.due_today_tasks += 1
        if is_due_on(task, tomorrow):
            stats.due_tomorrow_tasks += 1
        if is_nearing_limit(task, elapsed):
            stats.nearing_limit_tasks += 1
    return stats


def time_by_task(
    tasks: Sequence[schemas.Task],
    entries: Sequence[schemas.TimeEntry],
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[schemas.TimeByTask]:
    task_map = {t.id: t for t in tasks}
    totals: Dict[int, int] = defaultdict(int)
    for entry in entries:
        if start and entry.start_time < start:
            continue
        if end and entry.start_time > end:
            continue
        totals[entry.task_id] += entry_elapsed(entry, now)

    result = [
        schemas.TimeByTask(task=task_map[task_id], total_time=seconds)
        for task_id, seconds in totals.items()
        if task_id in task_map
    ]
    result.sort(key=lambda r: r.total_time, reverse=True)
    return result


def daily_stats(
    entries: Sequence[schemas.TimeEntry],
    now: datetime,
    start: datetime,
    end: datetime,
) -> List[schemas.DailyStat]:
    per_day: Dict[date, int] = defaultdict(int)
    for entry in entries:
        if start <= entry.start_time <= end:
            per_day[entry.start_time.date()] += entry_elapsed(entry, now)

    result = []
    day = start.date()
    while day <= end.date():
        result.append(schemas.DailyStat(date=day.isoformat(), total_time=per_day.get(day, 0)))
        day += timedelta(days=1)
    return result


# ---------------- Dashboard card listings ----------------


def overdue_tasks(tasks: Sequence[schemas.TaskWithStats], now: datetime) -> List[schemas.TaskWithStats]:
    return [t for t in tasks if is_overdue(t, now)]


def due_tasks(tasks: Sequence[schemas.TaskWithStats], day_start: datetime) -> List[schemas.TaskWithStats]:
    return [t for t in tasks if is_due_on(t, day_start)]


def overtime_tasks(tasks: Sequence[schemas.TaskWithStats]) -> List[schemas.OvertimeTask]:
    out = []
    for t in tasks:
        if is_over_budget(t, t.total_time):
            budget = _budget_seconds(t)
            out.append(
                schemas.OvertimeTask(
                    **t.model_dump(),
                    estimated_time=budget,
                    exceeding_time=t.total_time - budget,
                )
            )
    return out


def nearing_limit_tasks(tasks: Sequence[schemas.TaskWithStats]) -> List[schemas.NearingLimitTask]:
    out = []
    for t in tasks:
        if is_nearing_limit(t, t.total_time):
            budget = _budget_seconds(t)
            out.append(
                schemas.NearingLimitTask(
                    **t.model_dump(),
                    estimated_time=budget,
                    percentage=round(t.total_time / budget * 100),
                )
            )
    return out
