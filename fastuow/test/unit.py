"""Test 헬퍼를 제공하는 모듈.

- 테이블이 만들어진 메모리 SQLite 세션 팩토리를 기본 제공합니다.

"""
from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import MetaData

from fastuow.config import Config
from fastuow.orm import (
    AsyncSessionMaker,
    SessionMaker,
    clear_mappers,
    init_async_db,
    init_db,
    start_mappers,
)

MapperHook = Callable[[MetaData], Any]


class FakeConfig(Config):
    """단위 테스트를 위한 메모리 DB 설정."""

    def __init__(self, name: str = "fastuow-test", echo: bool = False):
        super().__init__(name=name, echo=echo)


def reset_mappers(init_hooks: Optional[list[MapperHook]] = None) -> MetaData:
    """기존 매핑을 지우고 ``init_hooks`` 로 다시 매핑합니다."""
    clear_mappers()
    return start_mappers(use_exist=False, init_hooks=init_hooks)


def memory_sessionmaker(init_hooks: Optional[list[MapperHook]] = None) -> SessionMaker:
    """테이블이 만들어진 메모리 SQLite 세션 팩토리를 리턴합니다.

    호출할 때마다 새로운 DB 를 만듭니다.
    """
    reset_mappers(init_hooks)
    return init_db(config=FakeConfig())


async def memory_async_sessionmaker(
    init_hooks: Optional[list[MapperHook]] = None,
) -> AsyncSessionMaker:
    """:func:`memory_sessionmaker` 의 비동기 버전 (``aiosqlite`` 필요)."""
    reset_mappers(init_hooks)
    return await init_async_db(config=FakeConfig())


def dispose_sessionmaker(factory: SessionMaker) -> None:
    """팩토리에 묶인 엔진의 연결을 모두 닫습니다."""
    getattr(factory, "kw")["bind"].dispose()


async def dispose_async_sessionmaker(factory: AsyncSessionMaker) -> None:
    await getattr(factory, "kw")["bind"].dispose()
