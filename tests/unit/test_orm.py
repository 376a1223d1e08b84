"""엔진과 세션 팩토리 초기화 테스트."""
import pytest
from sqlalchemy import inspect, text

from fastuow.orm import (
    get_async_scoped_session,
    get_scoped_session,
    get_sessionmaker,
    init_engine,
    make_sessionmaker,
    set_default_sessionmaker,
    start_mappers,
)
from fastuow.test.unit import FakeConfig, dispose_sessionmaker, memory_sessionmaker
from tests.app.adapters.orm import init_mappers


def test_memory_sessionmaker_creates_tables():
    get_session = memory_sessionmaker(init_hooks=[init_mappers])
    session = get_session()
    try:
        tables = inspect(session.get_bind()).get_table_names()
        assert {"users", "tag"} <= set(tables)
    finally:
        session.close()
        dispose_sessionmaker(get_session)


def test_sessions_do_not_autoflush(get_session):
    session = get_session()
    assert session.autoflush is False


def test_default_sessionmaker_can_be_replaced(get_session):
    set_default_sessionmaker(get_session)
    try:
        assert get_sessionmaker() is get_session
    finally:
        set_default_sessionmaker(None)


def test_scoped_session_is_closed_on_exit():
    config = FakeConfig()
    engine = init_engine(
        start_mappers(),
        config.get_db_url(),
        connect_args=config.get_db_connect_args(),
        poolclass=config.get_db_poolclass(),
    )
    scoped_session = get_scoped_session(engine)

    with scoped_session() as db:
        assert db.execute(text("SELECT 1")).scalar() == 1
        assert db.in_transaction()

    assert not db.in_transaction()
    engine.dispose()


@pytest.mark.asyncio
async def test_async_scoped_session_is_closed_on_exit(get_async_session):
    engine = getattr(get_async_session, "kw")["bind"]
    scoped_session = get_async_scoped_session(engine)

    async with scoped_session() as db:
        assert (await db.execute(text("SELECT 1"))).scalar() == 1
        assert db.in_transaction()

    assert not db.in_transaction()


def test_make_sessionmaker_keeps_loaded_state(get_session):
    factory = make_sessionmaker(getattr(get_session, "kw")["bind"])
    assert factory().expire_on_commit is False
