from loguru import logger

from ..config import Settings
from .base import Storage
from .memory import MemoryStorage
from .sql import SqlStorage

BACKENDS = ("sqlite", "postgres", "memory")


def create_storage(settings: Settings) -> Storage:
    backend = (settings.storage_backend or "sqlite").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}; expected one of {', '.join(BACKENDS)}")

    logger.info("Selecting storage backend", backend=backend)
    if backend == "memory":
        return MemoryStorage()

    url = settings.database_url
    if backend == "postgres" and not url.startswith(("postgres://", "postgresql")):
        raise ValueError("STORAGE_BACKEND=postgres requires a PostgreSQL DATABASE_URL")
    if backend == "sqlite" and not url.startswith("sqlite"):
        raise ValueError("STORAGE_BACKEND=sqlite requires a sqlite:// DATABASE_URL")
    return SqlStorage.from_url(url)


__all__ = ["Storage", "MemoryStorage", "SqlStorage", "create_storage"]
