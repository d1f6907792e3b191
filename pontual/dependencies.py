"""FastAPI dependencies: shared services and request authentication.

The app factory stores the storage backend, settings and the WhatsApp client
factory on ``app.state``; everything here reads from there so tests can swap
any of them out.
"""

import base64
import binascii
from typing import Optional

from fastapi import Depends, Header, Request
from loguru import logger

from . import schemas
from .auth import decode_user_id, verify_password
from .clock import utcnow
from .config import Settings
from .errors import AuthError, PermissionDeniedError
from .storage import Storage
from .timer import TimerService
from .whatsapp import CommandDispatcher, WhatsappService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_clock(request: Request):
    return getattr(request.app.state, "clock", utcnow)


def get_timer_service(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> TimerService:
    return TimerService(storage, clock=get_clock(request), min_session_seconds=settings.min_session_seconds)


def get_whatsapp_service(
    request: Request,
    storage: Storage = Depends(get_storage),
    timers: TimerService = Depends(get_timer_service),
) -> WhatsappService:
    dispatcher = CommandDispatcher(storage, timers, clock=get_clock(request))
    return WhatsappService(storage, dispatcher, request.app.state.whatsapp_client_factory)


def _basic_user(value: str, storage: Storage) -> Optional[schemas.UserRecord]:
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    user = storage.get_user_by_username(username)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> schemas.UserRecord:
    user = None
    if x_api_key:
        user = storage.get_user_by_api_key(x_api_key)
    elif authorization:
        scheme, _, value = authorization.partition(" ")
        scheme = scheme.lower()
        if scheme == "bearer" and value:
            user_id = decode_user_id(value.strip(), settings)
            user = storage.get_user(user_id) if user_id is not None else None
        elif scheme == "basic" and value:
            user = _basic_user(value.strip(), storage)
    else:
        raise AuthError("Authentication required")

    if user is None:
        logger.info("Rejected credentials")
        raise AuthError("Invalid credentials")
    if not user.is_active:
        raise AuthError("User is inactive")
    return user


def require_admin(user: schemas.UserRecord = Depends(get_current_user)) -> schemas.UserRecord:
    if user.role != "admin":
        raise PermissionDeniedError("Admin access required")
    return user
