"""
Shared fixtures: every backend-facing test runs once per storage engine.
"""
import pytest
import pytest_asyncio

from meterhub.services.virtual_sources import VirtualSourceResolver
from meterhub.storage import MemoryBackend, SqlAlchemyBackend

from tests.factories import add_user


@pytest_asyncio.fixture(params=["memory", "sql"])
async def backend(request, tmp_path):
    """Empty, initialized backend."""
    if request.param == "memory":
        store = MemoryBackend()
    else:
        store = SqlAlchemyBackend(database_url=f"sqlite+aiosqlite:///{tmp_path / 'meterhub.db'}")
    await store.initialize(wipe=True)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def owned_backend(backend):
    """Backend holding the user ``alice`` who owns every test source."""
    await add_user(backend, "alice")
    return backend


@pytest.fixture
def resolver(owned_backend):
    return VirtualSourceResolver(owned_backend, concurrency=4)


@pytest_asyncio.fixture
async def sql_backend(tmp_path):
    """SQLite-backed store for behaviour specific to the SQL backend."""
    store = SqlAlchemyBackend(database_url=f"sqlite+aiosqlite:///{tmp_path / 'meterhub.db'}")
    await store.initialize(wipe=True)
    yield store
    await store.close()
