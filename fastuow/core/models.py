from __future__ import annotations

import abc
import enum
from contextlib import AbstractContextManager
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    List,
    Optional,
    Protocol,
    Type,
    TypeVar,
)

from sqlalchemy.sql.elements import ColumnElement

from .errors import InvalidOperationError

if TYPE_CHECKING:
    from fastuow.context import EntityQuery, PersistenceContext


class Entity(Protocol):
    """Entity 프로토콜 명세.

    SqlAlchemy ORM 에 매핑된 클래스의 인스턴스라면 무엇이든 됩니다.
    기본키 컬럼은 매퍼가 알고 있으므로 ``id`` 같은 필드를 강제하지 않습니다.
    """


E = TypeVar("E", bound=Entity)
D = TypeVar("D")

Key = Any
"""기본키 값. 단일 컬럼이면 스칼라, 복합키이면 튜플입니다."""

Predicate = ColumnElement[bool]
"""``User.name == "kim"`` 처럼 SqlAlchemy 컬럼 표현식으로 만든 조건."""


class EntityState(enum.Enum):
    """컨텍스트가 추적하는 엔티티 상태."""

    DETACHED = "detached"
    ADDED = "added"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    DELETED = "deleted"

    @property
    def is_pending(self) -> bool:
        """다음 flush 때 저장소에 반영될 상태인지 여부."""
        return self in (EntityState.ADDED, EntityState.MODIFIED, EntityState.DELETED)


class AbstractRepository(Generic[E], abc.ABC):
    """엔티티 타입 하나에 대한 Repository 패턴의 추상 인터페이스 입니다.

    모든 작업은 동기 메소드와 ``*_async`` 코루틴 쌍으로 제공되며,
    중단(suspend) 지점 외에는 동작이 같아야 합니다.
    """

    entity_class: Type[E]

    @abc.abstractmethod
    def get_by_id(self, key: Key) -> Optional[E]:
        """기본키로 엔티티를 조회합니다. 없으면 ``None`` 을 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_by_id_async(self, key: Key) -> Optional[E]:
        raise NotImplementedError

    @abc.abstractmethod
    def query(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Any = None,
        descending: bool = False,
    ) -> EntityQuery[E]:
        """지연 평가되는 쿼리를 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def find(self, predicate: Optional[Predicate] = None) -> Optional[E]:
        raise NotImplementedError

    @abc.abstractmethod
    async def find_async(self, predicate: Optional[Predicate] = None) -> Optional[E]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_as(self, predicate: Optional[Predicate], mapper: Callable[[E], D]) -> Optional[D]:
        """조건에 맞는 첫번째 엔티티를 ``mapper`` 로 변환해 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    async def find_as_async(
        self, predicate: Optional[Predicate], mapper: Callable[[E], D]
    ) -> Optional[D]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_all(self, predicate: Optional[Predicate] = None) -> List[E]:
        raise NotImplementedError

    @abc.abstractmethod
    async def find_all_async(self, predicate: Optional[Predicate] = None) -> List[E]:
        raise NotImplementedError

    @abc.abstractmethod
    def insert(self, entity: E, submit: bool = True) -> E:
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_async(self, entity: E, submit: bool = True) -> E:
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, entity: E, submit: bool = True) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_async(self, entity: E, submit: bool = True) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_by_id(self, key: Key, submit: bool = True) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_by_id_async(self, key: Key, submit: bool = True) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def update(self, entity: E, submit: bool = True) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def update_async(self, entity: E, submit: bool = True) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def save_changes(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def save_changes_async(self) -> int:
        raise NotImplementedError


RepoMakerFunc = Callable[["AbstractUnitOfWork"], AbstractRepository]
RepoMakerDict = dict[Type[Any], RepoMakerFunc]


class AbstractUnitOfWork(AbstractContextManager["AbstractUnitOfWork"]):
    """UnitOfWork 패턴의 추상 인터페이스입니다.

    UnitOfWork(UoW)는 영구 저장소의 유일한 진입점이며, 하나의 컨텍스트를
    소유하고 엔티티 타입별 레포지터리를 한 번씩만 만들어 공유합니다.
    """

    def __enter__(self) -> AbstractUnitOfWork:
        """``with`` 블록에 진입했을때 실행되는 메소드입니다.

        비동기 세션은 동기적으로 닫을 수 없으므로 ``async with`` 를 사용해야 합니다.
        """
        if self.context.is_async:
            raise InvalidOperationError(
                "an async unit of work must be used with 'async with'"
            )
        return self

    def __exit__(self, *args: Any) -> None:
        """``with`` 블록에서 빠져나갈 때 컨텍스트를 해제합니다.

        커밋되지 않은 변경은 세션이 닫히면서 버려집니다.
        """
        self.dispose()

    async def __aenter__(self) -> AbstractUnitOfWork:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.dispose_async()

    def __getitem__(self, key: Type[E]) -> AbstractRepository[E]:
        return self.repository(key)

    @property
    @abc.abstractmethod
    def context(self) -> PersistenceContext:
        raise NotImplementedError

    @abc.abstractmethod
    def repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        """``entity_class`` 에 대한 레포지터리를 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def register_repository(
        self, entity_class: Type[E], repository: AbstractRepository[E]
    ) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def save(self) -> int:
        """추적 중인 모든 변경을 한번에 저장하고 반영된 엔티티 수를 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    async def save_async(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def dispose(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def dispose_async(self) -> None:
        raise NotImplementedError
