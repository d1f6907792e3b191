from typing import List

from fastapi import APIRouter, Depends
from loguru import logger

from .. import schemas
from ..auth import generate_reset_token, generate_temporary_password, hash_password
from ..config import Settings
from ..dependencies import get_app_settings, get_storage, require_admin
from ..errors import ConflictError, NotFoundError
from ..storage import Storage
from .auth import public_user, reset_token_expiry

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_admin)])


@router.get("", response_model=List[schemas.UserPublic])
def list_users(storage: Storage = Depends(get_storage)):
    return [public_user(u) for u in storage.list_users()]


@router.post("", response_model=schemas.CreatedUser, status_code=201)
def create_user(body: schemas.UserCreateByAdmin, storage: Storage = Depends(get_storage)):
    if storage.get_user_by_username(body.username):
        raise ConflictError("Username already registered")

    temporary_password = generate_temporary_password()
    user = storage.create_user(
        schemas.UserCreate(
            username=body.username,
            password_hash=hash_password(temporary_password),
            email=body.email,
            full_name=body.full_name,
            role=body.role,
            must_reset_password=True,
        )
    )
    logger.info("User created by admin", username=user.username, role=user.role)
    return {"user": public_user(user), "temporary_password": temporary_password}


@router.put("/{user_id}", response_model=schemas.UserPublic)
def update_user(user_id: int, body: schemas.UserUpdate, storage: Storage = Depends(get_storage)):
    updates = body.model_dump(exclude_unset=True)
    return public_user(storage.update_user(user_id, updates))


@router.delete("/{user_id}", response_model=schemas.OkResult)
def delete_user(
    user_id: int,
    admin: schemas.UserRecord = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    if user_id == admin.id:
        raise ConflictError("Administrators cannot delete their own account")
    storage.delete_user(user_id)
    return {"ok": True}


@router.post("/{user_id}/reset-token", response_model=schemas.ResetTokenResult)
def issue_reset_token(
    user_id: int,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    if storage.get_user(user_id) is None:
        raise NotFoundError("User not found")

    token = generate_reset_token()
    expires = reset_token_expiry(settings)
    storage.update_user(
        user_id, {"reset_token": token, "reset_token_expiry": expires, "must_reset_password": True}
    )
    return {"reset_token": token, "expires_at": expires}
