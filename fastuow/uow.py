"""UnitOfWork 패턴 모듈.

SqlAlchemy를 이용한 기본 구현체를 제공합니다.

UoW 는 영구 저장소의 유일한 진입점이며, 로드된 객체의 최신 상태를 계속 트래킹 합니다.
하나의 UoW 는 하나의 논리적 작업(요청, 태스크) 안에서만 사용해야 하며, 동시에
여러 흐름에서 작업하려면 각각 별도의 UoW 를 만들어야 합니다.
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Optional, Type, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from fastuow.context import PersistenceContext
from fastuow.core import (
    AbstractRepository,
    AbstractUnitOfWork,
    DisposedError,
    InvalidOperationError,
    RepoMakerDict,
)
from fastuow.logging import get_logger
from fastuow.repo import SqlAlchemyRepository

E = TypeVar("E")

AnySessionMaker = Callable[[], Union[Session, AsyncSession]]

logger = get_logger("fastuow.uow")


class RepositoryRegistry:
    """엔티티 타입 -> 레포지터리 맵.

    처음 요청한 흐름만 레포지터리를 만들 수 있도록 삽입을 락으로 보호합니다.
    키는 타입 이름 문자열이 아니라 클래스 객체 자체입니다.
    """

    def __init__(self) -> None:
        self._repos: dict[Type[Any], AbstractRepository] = {}
        self._lock = threading.Lock()

    def __contains__(self, entity_class: Type[Any]) -> bool:
        return entity_class in self._repos

    def __len__(self) -> int:
        return len(self._repos)

    def get_or_add(
        self,
        entity_class: Type[E],
        factory: Callable[[], AbstractRepository[E]],
    ) -> AbstractRepository[E]:
        """등록된 레포지터리를 리턴하거나, 없으면 ``factory`` 로 만들어 등록합니다."""
        repo = self._repos.get(entity_class)
        if repo is not None:
            return repo

        with self._lock:
            repo = self._repos.get(entity_class)
            if repo is None:
                repo = self._repos[entity_class] = factory()
                logger.debug("repository created: %r", repo)
        return repo

    def add(self, entity_class: Type[E], repository: AbstractRepository[E]) -> None:
        with self._lock:
            if entity_class in self._repos:
                raise InvalidOperationError(
                    f"repository for {entity_class.__name__} is already registered"
                )
            self._repos[entity_class] = repository


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """``SqlAlchemy`` ORM을 이용한 UnitOfWork 패턴 구현입니다.

    Example: ::

        with SqlAlchemyUnitOfWork() as uow:
            users = uow.repository(User)
            users.insert(User(name="kim"), submit=False)
            users.insert(User(name="lee"), submit=False)
            uow.save()  # == 2
    """

    def __init__(
        self,
        context: Optional[PersistenceContext] = None,
        get_session: Optional[AnySessionMaker] = None,
        repo_maker: Optional[RepoMakerDict] = None,
    ) -> None:
        """UoW를 초기화합니다.

        Args:
            context: 외부에서 주입한 컨텍스트. 생략하면 ``get_session`` 으로 만든 세션을 감쌉니다.
            get_session: 세션 팩토리. 생략하면 :func:`fastuow.orm.get_sessionmaker` 를 사용합니다.
            repo_maker: 엔티티 타입별로 기본 :class:`SqlAlchemyRepository` 대신 사용할 레포지터리 팩토리.
        """
        super().__init__()
        if context is None:
            if not get_session:
                from fastuow.orm import get_sessionmaker

                get_session = get_sessionmaker()
            context = PersistenceContext(get_session())

        self._context = context
        self.repos = RepositoryRegistry()
        self.repo_maker = repo_maker or {}
        self._disposed = False

    def __repr__(self) -> str:
        return f"SqlAlchemyUnitOfWork[{self._context!r}]"

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def context(self) -> PersistenceContext:
        if self._disposed:
            raise DisposedError("unit of work has been disposed")
        return self._context

    def repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        """``entity_class`` 의 레포지터리를 리턴합니다.

        같은 UoW 에서는 항상 같은 인스턴스를 리턴합니다.
        """
        self.context.check_disposed()

        def make() -> AbstractRepository[E]:
            maker = self.repo_maker.get(entity_class)
            if maker:
                return maker(self)
            return SqlAlchemyRepository(entity_class, self)

        return self.repos.get_or_add(entity_class, make)

    def register_repository(
        self, entity_class: Type[E], repository: AbstractRepository[E]
    ) -> None:
        """직접 만든 레포지터리를 등록합니다. 이미 등록된 타입이면 에러가 발생합니다."""
        self.context.check_disposed()
        self.repos.add(entity_class, repository)

    def save(self) -> int:
        """추적 중인 모든 변경을 한번에 저장합니다."""
        return self.context.save_changes()

    async def save_async(self) -> int:
        return await self.context.save_changes_async()

    def dispose(self) -> None:
        """컨텍스트를 해제합니다. 이후 모든 작업은 :class:`DisposedError` 를 발생시킵니다."""
        if self._disposed:
            return
        self._context.dispose()
        self._disposed = True

    async def dispose_async(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self._context.dispose_async()
