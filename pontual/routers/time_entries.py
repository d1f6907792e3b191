from typing import List

from fastapi import APIRouter, Depends, Response

from .. import schemas
from ..dependencies import get_current_user, get_storage
from ..errors import ActiveEntryError, NotFoundError, ValidationError
from ..storage import Storage

router = APIRouter(prefix="/time-entries", tags=["time-entries"])

NO_CACHE = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("", response_model=List[schemas.TimeEntryWithTask])
def list_time_entries(
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.get_all_time_entries()


# declared before /{entry_id} so "running" and "all" never reach the int converter
@router.get("/running", response_model=List[schemas.TimeEntryWithTask])
def running_time_entries(
    response: Response,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    response.headers.update(NO_CACHE)
    return storage.get_running_time_entries()


@router.delete("/all")
def delete_all_time_entries(
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    deleted = storage.delete_all_time_entries()
    return {"ok": True, "deleted": deleted}


@router.post("", response_model=schemas.TimeEntry, status_code=201)
def create_time_entry(
    body: schemas.TimeEntryCreate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    if body.user_id is None:
        body = body.model_copy(update={"user_id": user.id})
    return storage.create_time_entry(body)


@router.get("/{entry_id}", response_model=schemas.TimeEntry)
def get_time_entry(
    entry_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    entry = storage.get_time_entry(entry_id)
    if entry is None:
        raise NotFoundError("Time entry not found")
    return entry


@router.put("/{entry_id}", response_model=schemas.TimeEntry)
def update_time_entry(
    entry_id: int,
    body: schemas.TimeEntryUpdate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    entry = storage.get_time_entry(entry_id)
    if entry is None:
        raise NotFoundError("Time entry not found")

    updates = body.model_dump(exclude_unset=True)
    merged = entry.model_copy(update=updates)
    if merged.end_time is not None and merged.end_time < merged.start_time:
        raise ValidationError("endTime must not be before startTime")
    return storage.update_time_entry(entry_id, updates)


@router.delete("/{entry_id}", response_model=schemas.OkResult)
def delete_time_entry(
    entry_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    entry = storage.get_time_entry(entry_id)
    if entry is None:
        raise NotFoundError("Time entry not found")
    if entry.is_running or entry.end_time is None:
        raise ActiveEntryError("Stop the timer before deleting this time entry")

    storage.delete_time_entry(entry_id)
    return {"ok": True}
