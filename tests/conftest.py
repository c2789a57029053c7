import os
import uuid
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/birdlens_test.db")
os.environ.setdefault("OPENAI_API_KEY", "test")

from fastapi.testclient import TestClient  # noqa: E402

from birdlens import db as db_module  # noqa: E402
from birdlens import dependencies  # noqa: E402
from birdlens.config import Settings  # noqa: E402
from birdlens.controllers import identify as identify_controller  # noqa: E402
from birdlens.db import init_db  # noqa: E402
from birdlens.main import app  # noqa: E402
from birdlens.services.repository import SqlRepository  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    db_url = os.environ["DATABASE_URL"]
    if db_url.startswith("sqlite:///"):
        Path(db_url.replace("sqlite:///", "")).unlink(missing_ok=True)
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        db_path = Path(db_url.replace("sqlite:///", ""))
        if db_path.exists():
            db_path.unlink()


@pytest.fixture(scope="module")
def client(apply_migrations):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def repo(apply_migrations):
    return SqlRepository(db_module.SessionLocal)


@pytest.fixture
def make_user(repo):
    """Factory for users with unique names and an optional plan."""

    def _make(plan: str = "free", end_date: datetime | None = None):
        user = repo.create_user(f"birder-{uuid.uuid4().hex[:12]}")
        if plan != "free" or end_date is not None:
            user = repo.update_user_subscription(user.id, plan, end_date)
        return user

    return _make


@pytest.fixture(autouse=True)
def stub_upload(monkeypatch):
    """Prevent real S3 calls from the identification endpoints."""
    uploads: list[tuple] = []

    async def _upload(user_id, data, content_type):
        uploads.append((user_id, data, content_type))
        owner = user_id if user_id is not None else "anonymous"
        return f"{owner}/test-{len(uploads)}.bin"

    monkeypatch.setattr(identify_controller, "upload_media", _upload)
    monkeypatch.setattr(
        identify_controller,
        "get_public_url",
        lambda key: f"https://cdn.example.com/{key}",
    )
    yield uploads


@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    class _Pipe:
        def __init__(self, store):
            self.store = store
            self.ops = []

        def incr(self, key):
            self.ops.append(("incr", key))
            return self

        def expire(self, key, ttl):
            self.ops.append(("expire", key, ttl))
            return self

        async def execute(self):
            results = []
            for op in self.ops:
                if op[0] == "incr":
                    key = op[1]
                    self.store[key] = self.store.get(key, 0) + 1
                    results.append(self.store[key])
                else:
                    results.append(True)
            self.ops.clear()
            return results

    class _Redis:
        def __init__(self):
            self.store = {}

        def pipeline(self):
            return _Pipe(self.store)

    fake = _Redis()
    monkeypatch.setattr(dependencies, "redis_client", fake)
    yield fake
