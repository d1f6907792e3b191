from datetime import timedelta

from fastapi import APIRouter, Depends
from loguru import logger

from .. import schemas
from ..auth import create_access_token, generate_api_key, hash_password, verify_password
from ..clock import utcnow
from ..config import Settings
from ..dependencies import get_app_settings, get_current_user, get_storage
from ..errors import AuthError, ConflictError, ValidationError
from ..storage import Storage

router = APIRouter(prefix="/auth", tags=["auth"])


def public_user(user: schemas.UserRecord) -> schemas.UserPublic:
    return schemas.UserPublic.model_validate(user.model_dump())


@router.get("/status", response_model=schemas.SystemStatus)
def system_status(storage: Storage = Depends(get_storage)):
    return {"initialized": storage.count_users() > 0}


@router.post("/initialize", response_model=schemas.Token, status_code=201)
def initialize(
    body: schemas.InitializeRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    if storage.count_users() > 0:
        raise ConflictError("System already initialized")

    api_key = generate_api_key()
    user = storage.create_user(
        schemas.UserCreate(
            username=body.username,
            password_hash=hash_password(body.password),
            email=body.email,
            full_name=body.full_name,
            role="admin",
            api_key=api_key,
        )
    )
    logger.info("System initialized", admin=user.username)
    return schemas.Token(
        access_token=create_access_token(user.id, settings),
        user=public_user(user),
        api_key=api_key,
    )


@router.post("/login", response_model=schemas.Token)
def login(
    body: schemas.LoginRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    user = storage.get_user_by_username(body.username.strip())
    if not user or not verify_password(body.password, user.password_hash):
        raise AuthError("Invalid username or password")
    if not user.is_active:
        raise AuthError("User is inactive")

    user = storage.update_user(user.id, {"last_login": utcnow()})
    return schemas.Token(
        access_token=create_access_token(user.id, settings),
        user=public_user(user),
        api_key=user.api_key,
    )


@router.get("/me", response_model=schemas.UserPublic)
def me(user: schemas.UserRecord = Depends(get_current_user)):
    return public_user(user)


@router.post("/api-key", response_model=schemas.ApiKeyResult)
def regenerate_api_key(
    user: schemas.UserRecord = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    api_key = generate_api_key()
    storage.update_user(user.id, {"api_key": api_key})
    return {"api_key": api_key}


@router.post("/change-password", response_model=schemas.OkResult)
def change_password(
    body: schemas.ChangePasswordRequest,
    user: schemas.UserRecord = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if not verify_password(body.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")

    storage.update_user(
        user.id, {"password_hash": hash_password(body.new_password), "must_reset_password": False}
    )
    return {"ok": True}


@router.post("/reset-password", response_model=schemas.OkResult)
def reset_password(body: schemas.ResetPasswordRequest, storage: Storage = Depends(get_storage)):
    user = storage.get_user_by_reset_token(body.token)
    if not user:
        raise ValidationError("Invalid reset token")

    if user.reset_token_expiry and utcnow() > user.reset_token_expiry:
        raise ValidationError("Reset token expired")

    storage.update_user(
        user.id,
        {
            "password_hash": hash_password(body.new_password),
            "reset_token": None,
            "reset_token_expiry": None,
            "must_reset_password": False,
        },
    )
    return {"ok": True}


def reset_token_expiry(settings: Settings):
    return utcnow() + timedelta(hours=settings.reset_token_ttl_hours)
