from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..clock import to_naive_utc
from ..dependencies import get_clock, get_current_user, get_storage
from ..storage import Storage, analytics

router = APIRouter(tags=["reports"], dependencies=[Depends(get_current_user)])


def _today(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day)


# ---------------- Dashboard ----------------

@router.get("/dashboard/stats", response_model=schemas.DashboardStats)
def dashboard_stats(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    return storage.get_dashboard_stats(clock())


@router.get("/dashboard/overdue-tasks", response_model=List[schemas.TaskWithStats])
def overdue_tasks(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    now = clock()
    return analytics.overdue_tasks(storage.get_all_tasks(now), now)


@router.get("/dashboard/overtime-tasks", response_model=List[schemas.OvertimeTask])
def overtime_tasks(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    return analytics.overtime_tasks(storage.get_all_tasks(clock()))


@router.get("/dashboard/due-today-tasks", response_model=List[schemas.TaskWithStats])
def due_today_tasks(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    now = clock()
    return analytics.due_tasks(storage.get_all_tasks(now), _today(now))


@router.get("/dashboard/due-tomorrow-tasks", response_model=List[schemas.TaskWithStats])
def due_tomorrow_tasks(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    now = clock()
    return analytics.due_tasks(storage.get_all_tasks(now), _today(now) + timedelta(days=1))


@router.get("/dashboard/nearing-limit-tasks", response_model=List[schemas.NearingLimitTask])
def nearing_limit_tasks(storage: Storage = Depends(get_storage), clock=Depends(get_clock)):
    return analytics.nearing_limit_tasks(storage.get_all_tasks(clock()))


# ---------------- Reports ----------------

@router.get("/reports/time-by-task", response_model=List[schemas.TimeByTask])
def time_by_task(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    storage: Storage = Depends(get_storage),
    clock=Depends(get_clock),
):
    return storage.get_time_by_task(to_naive_utc(start_date), to_naive_utc(end_date), clock())


@router.get("/reports/daily-stats", response_model=List[schemas.DailyStat])
def daily_stats(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    storage: Storage = Depends(get_storage),
    clock=Depends(get_clock),
):
    return storage.get_daily_stats(to_naive_utc(start_date), to_naive_utc(end_date), clock())
