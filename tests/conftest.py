import os
import tempfile

# Point the global engines at throwaway SQLite before any project module is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOCAL_CACHE_URL", "sqlite://")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="planner-media-"))
os.environ.setdefault("OUTBOX_MAX_ATTEMPTS", "1")

import pytest

from database.database import Database
from database.local_cache import LocalCache
from database.row_store import FileStore, RowStore


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.drop_tables()
    database.engine.dispose()


@pytest.fixture
def store(database):
    store = RowStore(database.get_session())
    yield store
    store.close()


@pytest.fixture
def cache():
    cache = LocalCache("sqlite://")
    yield cache
    cache.close()


@pytest.fixture
def files(tmp_path):
    return FileStore(root=str(tmp_path / "media"), base_url="/media")


@pytest.fixture
def student(store):
    return store.insert('users', {'email': 'ada@example.com', 'name': 'Ada', 'roles': ['student']})


@pytest.fixture
def coach(store):
    return store.insert('users', {'email': 'coach@example.com', 'name': 'Grace', 'roles': ['coach']})


@pytest.fixture
def admin(store):
    return store.insert('users', {'email': 'admin@example.com', 'name': 'Root', 'roles': ['admin']})
