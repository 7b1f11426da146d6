from __future__ import annotations

from typing import Dict, Optional, Tuple
from urllib.parse import quote

import pytest

from checkin import create_app
from checkin.api import _active
from checkin.models import db


class FakeObjectStore:
    """In-memory stand-in for R2ObjectStore."""

    public_base = "https://cdn.test"

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.list_error: Optional[Exception] = None
        self.upload_error: Optional[Exception] = None
        self.upload_calls = 0

    def add(self, container: str, *paths: str) -> None:
        for path in paths:
            self.objects[(container, path)] = (b"x", "application/octet-stream")

    def list(self, container: str, prefix: str = "", *, limit: int = 1000) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        names = []
        for c, path in self.objects:
            if c != container or not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            if rest and "/" not in rest:
                names.append(rest)
        return names[:limit]

    def public_url(self, container: str, path: str) -> str:
        return f"{self.public_base}/{container}/{quote(path, safe='/')}"

    def upload(self, container: str, path: str, data: bytes, content_type: str, **_kw) -> None:
        self.upload_calls += 1
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[(container, path)] = (bytes(data), content_type)


TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "JWT_SECRET": "test-jwt-secret",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SQLALCHEMY_ENGINE_OPTIONS": {},
    "EMAIL_PROVIDER": "console",
    "FRONTEND_BASE_URL": "http://frontend.test",
    "LESSONS_BUCKET": "lessons",
    "RECORDINGS_BUCKET": "recordings",
    "LIST_PREFIX": "",
    "LESSON_SOURCE": "listing",
    "MIN_RECORDING_BYTES": 1024,
}


@pytest.fixture()
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture()
def app(object_store: FakeObjectStore):
    app = create_app(TEST_CONFIG, object_store=object_store)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    _active.clear()


@pytest.fixture()
def client(app):
    return app.test_client()
