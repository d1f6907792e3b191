from fastapi import APIRouter, Depends

from .. import schemas
from ..dependencies import get_current_user, get_timer_service
from ..errors import ConflictError
from ..timer import TimerService

router = APIRouter(tags=["timers"])


def _target_entry(body: schemas.TimerActionRequest, timers: TimerService) -> int:
    if body.entry_id is not None:
        return body.entry_id
    timers.require_task(body.task_id)
    entry = timers.active_entry_for_task(body.task_id)
    if entry is None:
        raise ConflictError(f"No active timer for task {body.task_id}")
    return entry.id


@router.post("/start-timer", response_model=schemas.TimeEntry, status_code=201)
def start_timer(
    body: schemas.StartTimerRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.start(body.task_id, notes=body.notes, user_id=user.id)


@router.post("/stop-timer", response_model=schemas.StopResult)
def stop_timer(
    body: schemas.TimerActionRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.stop(_target_entry(body, timers))


@router.post("/pause-timer", response_model=schemas.TimeEntry)
def pause_timer(
    body: schemas.TimerActionRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.pause(_target_entry(body, timers))


@router.post("/resume-timer", response_model=schemas.TimeEntry)
def resume_timer(
    body: schemas.TimerActionRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.resume(_target_entry(body, timers))


@router.post("/finish-timer", response_model=schemas.StopResult)
def finish_timer(
    body: schemas.TimerActionRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.finish(_target_entry(body, timers))


@router.post("/finish-and-complete", response_model=schemas.TimeEntry)
def finish_and_complete(
    body: schemas.TimerActionRequest,
    timers: TimerService = Depends(get_timer_service),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return timers.finish_and_complete(_target_entry(body, timers), task_id=body.task_id)
