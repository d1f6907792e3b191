import hashlib
import secrets
import string
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from .clock import utcnow
from .config import Settings


def _bcrypt_input(password: str) -> bytes:
    """
    bcrypt only accepts up to 72 bytes.
    If longer, pre-hash to 32 bytes (SHA-256) first.
    """
    raw = password.encode("utf-8")
    if len(raw) <= 72:
        return raw
    return hashlib.sha256(raw).digest()


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(_bcrypt_input(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_bcrypt_input(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user_id: int, settings: Settings) -> str:
    exp = utcnow() + timedelta(hours=settings.access_token_expire_hours)
    payload = {"sub": str(user_id), "exp": exp}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_user_id(token: str, settings: Settings) -> Optional[int]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        return int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        return None


def generate_api_key() -> str:
    return "pk_" + secrets.token_urlsafe(32)


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


def generate_temporary_password(length: int = 12) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))
