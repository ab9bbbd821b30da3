import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from checkdeposit.db.base import Base
from checkdeposit.db.repositories import CheckStore
from checkdeposit.pipeline.config import PipelineConfig


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")

    from checkdeposit.core.settings import get_settings

    get_settings.cache_clear()

    from checkdeposit.main import app

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'checks.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> CheckStore:
    return CheckStore(session_factory)


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(
        incoming_container="incoming",
        ocr_url="http://ocr.local/parse",
        smtp_host="localhost",
        notification_from_address="check.deposit@example.com",
        iam_url="http://iam.local/token",
        max_attempts=3,
        backoff_base_s=1.0,
        max_workers=2,
    )


def make_image(width: int = 600, height: int = 280, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format=image_format)
    return buffer.getvalue()


def encode(text: str) -> str:
    return base64.b64encode(text.encode("ascii")).decode("ascii")
