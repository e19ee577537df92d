import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("OTEL_TRACES_EXPORTER", "none")


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import storefront_api.models  # noqa: E402,F401
from storefront_api.app import build_loyalty_services, create_app  # noqa: E402
from storefront_api.db.base import Base  # noqa: E402
from storefront_api.db.session import get_session  # noqa: E402
from storefront_api.observability.loyalty import get_loyalty_store  # noqa: E402


@pytest.fixture(autouse=True)
def reset_loyalty_observability():
    store = get_loyalty_store()
    store.reset()
    yield
    store.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    build_loyalty_services(app, session_factory)

    try:
        yield app, session_factory
    finally:
        await app.state.loyalty_engine.flush_notifications()
        app.dependency_overrides.clear()
