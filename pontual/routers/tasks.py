from typing import List

from fastapi import APIRouter, Depends

from .. import schemas
from ..dependencies import get_clock, get_current_user, get_storage
from ..errors import NotFoundError
from ..storage import Storage

router = APIRouter(tags=["tasks"])


# ---------------- Tasks ----------------

@router.get("/tasks", response_model=List[schemas.TaskWithStats])
def list_tasks(
    storage: Storage = Depends(get_storage),
    clock=Depends(get_clock),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.get_all_tasks(clock())


@router.post("/tasks", response_model=schemas.Task, status_code=201)
def create_task(
    body: schemas.TaskCreate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    if body.user_id is None:
        body = body.model_copy(update={"user_id": user.id})
    return storage.create_task(body)


@router.get("/tasks/{task_id}", response_model=schemas.TaskWithStats)
def get_task(
    task_id: int,
    storage: Storage = Depends(get_storage),
    clock=Depends(get_clock),
    user: schemas.UserRecord = Depends(get_current_user),
):
    task = storage.get_task_with_stats(task_id, clock())
    if task is None:
        raise NotFoundError("Task not found")
    return task


@router.put("/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    body: schemas.TaskUpdate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.update_task(task_id, body.model_dump(exclude_unset=True))


@router.delete("/tasks/{task_id}", response_model=schemas.OkResult)
def delete_task(
    task_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    storage.delete_task(task_id)
    return {"ok": True}


@router.post("/tasks/{task_id}/complete", response_model=schemas.Task)
def complete_task(
    task_id: int,
    storage: Storage = Depends(get_storage),
    clock=Depends(get_clock),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.complete_task(task_id, clock())


@router.post("/tasks/{task_id}/reopen", response_model=schemas.Task)
def reopen_task(
    task_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.reopen_task(task_id)


# ---------------- Task items ----------------

@router.get("/tasks/{task_id}/items", response_model=List[schemas.TaskItem])
def list_task_items(
    task_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    if storage.get_task(task_id) is None:
        raise NotFoundError("Task not found")
    return storage.get_task_items(task_id)


@router.post("/tasks/{task_id}/items", response_model=schemas.TaskItem, status_code=201)
def create_task_item(
    task_id: int,
    body: schemas.TaskItemBody,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.create_task_item(
        schemas.TaskItemCreate(task_id=task_id, title=body.title, completed=body.completed, user_id=user.id)
    )


@router.put("/task-items/{item_id}", response_model=schemas.TaskItem)
def update_task_item(
    item_id: int,
    body: schemas.TaskItemUpdate,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    return storage.update_task_item(item_id, body.model_dump(exclude_unset=True))


@router.delete("/task-items/{item_id}", response_model=schemas.OkResult)
def delete_task_item(
    item_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    storage.delete_task_item(item_id)
    return {"ok": True}


@router.post("/tasks/{task_id}/complete-all-items", response_model=List[schemas.TaskItem])
def complete_all_items(
    task_id: int,
    storage: Storage = Depends(get_storage),
    user: schemas.UserRecord = Depends(get_current_user),
):
    storage.complete_all_task_items(task_id)
    return storage.get_task_items(task_id)
