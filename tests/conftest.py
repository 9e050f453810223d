import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from analytics_cache import AnalyticsCache, MemoryCacheStore
from config import DEFAULT_CACHE_TTLS
from database import Base, _enable_sqlite_pragmas
import models  # noqa: F401


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as db:
        yield db


@pytest.fixture
def cache() -> AnalyticsCache:
    return AnalyticsCache(MemoryCacheStore(), DEFAULT_CACHE_TTLS, prefix="analytics:")
