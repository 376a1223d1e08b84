"""ORM 어댑터 모듈.

엔진과 세션 팩토리를 초기화합니다. 세션 팩토리는 ``autoflush=False`` 로 만들어
:meth:`~fastuow.uow.SqlAlchemyUnitOfWork.save` 를 호출하기 전까지 보류 중인
변경이 DB에 흘러가지 않도록 합니다.
"""
from __future__ import annotations

import io
import logging
import re
from contextlib import AbstractContextManager, asynccontextmanager, contextmanager
from typing import (
    Any,
    AsyncGenerator,
    AsyncContextManager,
    Callable,
    Generator,
    Optional,
    Type,
    Union,
    cast,
)

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import clear_mappers as _clear_mappers
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session
from sqlalchemy.pool import Pool

from fastuow.config import FastUoW, get_config

SessionMaker = Callable[[], Session]
"""Session 팩토리 타입."""
AsyncSessionMaker = Callable[[], AsyncSession]
ScopedSession = AbstractContextManager[Session]
metadata: Optional[MetaData] = None

_session_factory: Optional[SessionMaker] = None  # pylint: disable=invalid-name


def get_sessionmaker() -> SessionMaker:
    """기본설정으로 SqlAlchemy Session 팩토리를 만듭니다."""
    global _session_factory  # pylint: disable=global-statement

    if not _session_factory:
        _session_factory = init_db()

    return _session_factory


def set_default_sessionmaker(factory: Optional[SessionMaker]) -> None:
    """:func:`get_sessionmaker` 가 리턴할 기본 팩토리를 바꿉니다. 테스트에서 사용합니다."""
    global _session_factory  # pylint: disable=global-statement
    _session_factory = factory


def make_sessionmaker(engine: Engine) -> SessionMaker:
    return cast(
        SessionMaker,
        sessionmaker(engine, autoflush=False, expire_on_commit=False),
    )


def make_async_sessionmaker(engine: AsyncEngine) -> AsyncSessionMaker:
    return cast(
        AsyncSessionMaker,
        async_sessionmaker(
            engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
        ),
    )


def init_db(
    db_url: Optional[str] = None,
    drop_all: bool = False,
    show_log: bool = False,
    init_hooks: Optional[list[Callable[[MetaData], Any]]] = None,
    config: Optional[FastUoW] = None,
) -> SessionMaker:
    """DB 엔진을 초기화하고 테이블을 만든 뒤 세션 팩토리를 리턴합니다."""
    config = config or get_config()
    url = db_url or config.get_db_url()

    engine = init_engine(
        start_mappers(init_hooks=init_hooks),
        url,
        connect_args=config.get_db_connect_args(url),
        poolclass=config.get_db_poolclass(url),
        drop_all=drop_all,
        show_log=show_log or config.echo,
    )
    return make_sessionmaker(engine)


async def init_async_db(
    db_url: Optional[str] = None,
    drop_all: bool = False,
    init_hooks: Optional[list[Callable[[MetaData], Any]]] = None,
    config: Optional[FastUoW] = None,
) -> AsyncSessionMaker:
    """:func:`init_db` 의 비동기 버전."""
    meta = start_mappers(init_hooks=init_hooks)
    engine = init_async_engine(config or get_config(), db_url)

    async with engine.begin() as conn:
        if drop_all:
            await conn.run_sync(meta.drop_all)
        await conn.run_sync(meta.create_all)

    return make_async_sessionmaker(engine)


def start_mappers(
    use_exist: bool = True,
    init_hooks: Optional[list[Callable[[MetaData], Any]]] = None,
) -> MetaData:
    """엔티티 클래스들을 SqlAlchemy ORM 매퍼에 등록합니다.

    매핑 자체는 ``init_hooks`` 로 받은 사용자 함수가 담당합니다.
    """
    global metadata  # pylint: disable=global-statement,invalid-name
    if use_exist and metadata:
        return metadata

    metadata = MetaData()

    # 사용자 매핑 함수 추가.
    if init_hooks:
        for hook in init_hooks:
            hook(metadata)

    return metadata


def clear_mappers() -> None:
    """ORM 매핑을 초기화 합니다."""
    global metadata  # pylint: disable=global-statement,invalid-name
    _clear_mappers()
    metadata = None


def init_engine(
    meta: MetaData,
    url: str,
    connect_args: Optional[dict[str, Any]] = None,
    poolclass: Optional[Type[Pool]] = None,
    show_log: Union[bool, dict[str, Any]] = False,
    drop_all: bool = False,
) -> Engine:
    """ORM Engine을 초기화 하고 ``meta`` 의 테이블을 생성합니다.

    Args:
        show_log: ``True`` 면 생성된 ``CREATE`` 구문을, ``{"all": True}`` 면 전체 로그를 출력합니다.
    """
    logger = logging.getLogger("sqlalchemy.engine.Engine")
    out = io.StringIO()
    handler = logging.StreamHandler(out)
    logger.addHandler(handler)
    kwargs: dict[str, Any] = dict(connect_args=connect_args or {}, echo=bool(show_log))
    if poolclass:
        kwargs["poolclass"] = poolclass

    try:
        engine = create_engine(url, **kwargs)

        if drop_all:
            meta.drop_all(engine)

        meta.create_all(engine)
    finally:
        logger.removeHandler(handler)

    if show_log:
        log_txt = out.getvalue()
        if show_log is True:
            print("".join(re.findall("CREATE.*?\n\n", log_txt, re.DOTALL | re.I)))
        elif isinstance(show_log, dict):
            if show_log.get("all"):
                print(log_txt)

    return engine


def init_async_engine(config: FastUoW, url: Optional[str] = None) -> AsyncEngine:
    """비동기 드라이버로 엔진을 만듭니다. 테이블은 만들지 않습니다."""
    url = url or config.get_async_db_url()
    kwargs: dict[str, Any] = dict(
        connect_args=config.get_db_connect_args(url), echo=config.echo
    )
    poolclass = config.get_db_poolclass(url)
    if poolclass:
        kwargs["poolclass"] = poolclass
    return create_async_engine(url, **kwargs)


def get_scoped_session(engine: Engine) -> Callable[[], ScopedSession]:
    """``with...`` 문으로 자동 리소스가 반환되는 세션을 리턴합니다.

    Example: ::

        with get_scoped_session(engine)() as db:
            users = db.query(User).all()
            ...

    Args:
        engine: Engine.

    """
    session_factory = make_sessionmaker(engine)

    @contextmanager
    def scoped_session() -> Generator[Session, None, None]:
        session: Optional[Session] = None
        try:
            yield (session := session_factory())  # pylint: disable=superfluous-parens
        finally:
            if session:
                session.close()  # pylint: disable=no-member

    return scoped_session


def get_async_scoped_session(
    engine: AsyncEngine,
) -> Callable[[], AsyncContextManager[AsyncSession]]:
    """:func:`get_scoped_session` 의 비동기 버전."""
    session_factory = make_async_sessionmaker(engine)

    @asynccontextmanager
    async def scoped_session() -> AsyncGenerator[AsyncSession, None]:
        session: Optional[AsyncSession] = None
        try:
            yield (session := session_factory())  # pylint: disable=superfluous-parens
        finally:
            if session:
                await session.close()

    return scoped_session
