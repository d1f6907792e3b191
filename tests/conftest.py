from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from pontual import schemas
from pontual.config import Settings
from pontual.main import create_app
from pontual.storage import MemoryStorage, SqlStorage
from pontual.timer import TimerService
from pontual.whatsapp import CommandDispatcher, WhatsappService

START = datetime(2025, 7, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class RecordingSender:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    def send_text(self, number: str, text: str) -> bool:
        self.sent.append((number, text))
        return self.ok


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        return MemoryStorage()
    return SqlStorage.from_url("sqlite://")


@pytest.fixture
def timers(storage, clock):
    return TimerService(storage, clock=clock)


@pytest.fixture
def make_task(storage):
    def _make(name="Demo", **fields):
        return storage.create_task(schemas.TaskCreate(name=name, **fields))

    return _make


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(storage, timers, clock):
    return CommandDispatcher(storage, timers, clock=clock)


@pytest.fixture
def whatsapp(storage, dispatcher, sender):
    return WhatsappService(storage, dispatcher, lambda integration: sender)


@pytest.fixture
def settings():
    return Settings(
        storage_backend="memory",
        secret_key="test-secret",
        logging_level="WARNING",
        _env_file=None,
    )


@pytest.fixture
def app(settings, storage, clock, sender):
    application = create_app(settings=settings, storage=storage, whatsapp_client_factory=lambda i: sender)
    application.state.clock = clock
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


ADMIN = {
    "username": "admin",
    "password": "s3cret-pass",
    "email": "admin@pontual.com.br",
    "fullName": "Admin Pontual",
}


@pytest.fixture
def admin_payload():
    return dict(ADMIN)


@pytest.fixture
def admin_login(client, admin_payload):
    res = client.post("/api/auth/initialize", json=admin_payload)
    assert res.status_code == 201, res.text
    return res.json()


@pytest.fixture
def auth_headers(admin_login):
    return {"Authorization": f"Bearer {admin_login['accessToken']}"}
