"""Functional test bootstrap.

Each test gets its own file-backed SQLite database under pytest's tmp_path
with the SQLite migrations applied. A file (rather than `:memory:`) lets
several threads hold their own connections, which the concurrency tests
rely on. The FastAPI app is built with the engine injected, so startup does
not create a second pool and nothing is cached at module scope.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from draftsync.config import AppConfig, AutosaveConfig, CorsConfig, DatabaseConfig
from draftsync.db import apply_migrations, build_engine, dispose_engine
from draftsync.logic.events import get_buffered_events
from draftsync.main import create_app


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'functional_tests.db'}"


@pytest.fixture
def engine(db_url):
    eng = build_engine(db_url)
    apply_migrations(eng)
    yield eng
    dispose_engine(eng)


@pytest.fixture
def app_config(db_url) -> AppConfig:
    return AppConfig(
        database=DatabaseConfig(dsn=db_url, auto_apply_migrations=False),
        autosave=AutosaveConfig(),
        cors=CorsConfig(),
    )


@pytest.fixture
def app(app_config, engine):
    return create_app(app_config, engine=engine)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def clear_event_buffer():
    get_buffered_events(clear=True)
    yield
    get_buffered_events(clear=True)
