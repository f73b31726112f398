import pytest
from fastapi.testclient import TestClient

from filerelay.config import Settings
from filerelay.main import create_app
from filerelay.relay import Relay


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        client_url="http://frontend.test",
        server_url="",
        max_file_size=1024 * 1024,
        session_max_age=3600,
        sweep_interval=1800,
        cors_origins="*",
    )


@pytest.fixture
def relay(settings):
    return Relay(settings)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
