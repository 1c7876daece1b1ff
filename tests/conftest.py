from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from levelkeeper.core.config import Settings
from levelkeeper.main import create_app
from levelkeeper.services.progression_store import JsonProgressionStore


@pytest.fixture()
def data_file(tmp_path) -> Path:
    return tmp_path / "data" / "xp_data.json"


@pytest.fixture()
def store(data_file) -> JsonProgressionStore:
    return JsonProgressionStore(data_file)


@pytest.fixture()
def make_settings(data_file) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {
            "environment": "test",
            "data_file": str(data_file),
            "cors_origins": ["*"],
            "autosave_interval_seconds": 0,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture()
def client(make_settings) -> Generator[TestClient, None, None]:
    app = create_app(make_settings())

    with TestClient(app) as test_client:
        yield test_client
