import io
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from app.config.settings import Settings
from app.main import create_app
from app.modules.expenses.repository import InMemoryExpenseRepository

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeClock:
    """Deterministic clock; each call returns the current instant, advance() moves it"""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_upload(content: bytes = PNG_BYTES, filename: str = "receipt.png",
                content_type: str = "image/png") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        storage_backend="memory",
        file_storage="local",
        upload_dir=str(tmp_path / "uploads"),
        environment="test",
        expense_form="simple",
    )


@pytest.fixture
def repository():
    return InMemoryExpenseRepository()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(settings, repository):
    app = create_app(settings, repository=repository)
    with TestClient(app) as test_client:
        yield test_client
