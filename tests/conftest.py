# pylint: disable=redefined-outer-name, protected-access
"""pytest 에서 사용될 전역 Fixture들을 정의합니다."""
from __future__ import annotations

from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy.orm import Session

from fastuow.orm import AsyncSessionMaker, SessionMaker
from fastuow.test.unit import (
    dispose_async_sessionmaker,
    dispose_sessionmaker,
    memory_async_sessionmaker,
    memory_sessionmaker,
)
from fastuow.uow import SqlAlchemyUnitOfWork
from tests.app.adapters.orm import init_mappers


@pytest.fixture
def get_session() -> Generator[SessionMaker, None, None]:
    """:class:`.Session` 팩토리 메소드(:class:`~fastuow.orm.SessionMaker`)
    를 리턴하는 픽스쳐 입니다.

    호출시마다 새 메모리 DB 를 만들어 테스트끼리 데이터를 공유하지 않습니다.
    같은 팩토리로 만든 세션들은 하나의 DB 를 공유합니다.
    """
    factory = memory_sessionmaker(init_hooks=[init_mappers])
    yield factory
    dispose_sessionmaker(factory)


@pytest.fixture
def session(get_session: SessionMaker) -> Generator[Session, None, None]:
    """테스트에 사용될 새로운 :class:`.Session` 픽스처를 리턴합니다.

    :rtype: :class:`~sqlalchemy.orm.Session`
    """
    session = get_session()
    yield session
    session.close()


@pytest.fixture
def uow(get_session: SessionMaker) -> Generator[SqlAlchemyUnitOfWork, None, None]:
    uow = SqlAlchemyUnitOfWork(get_session=get_session)
    yield uow
    uow.dispose()


@pytest_asyncio.fixture
async def get_async_session() -> AsyncGenerator[AsyncSessionMaker, None]:
    factory = await memory_async_sessionmaker(init_hooks=[init_mappers])
    yield factory
    await dispose_async_sessionmaker(factory)


@pytest_asyncio.fixture
async def async_uow(
    get_async_session: AsyncSessionMaker,
) -> AsyncGenerator[SqlAlchemyUnitOfWork, None]:
    uow = SqlAlchemyUnitOfWork(get_session=get_async_session)
    yield uow
    await uow.dispose_async()
