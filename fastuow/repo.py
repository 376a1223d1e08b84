"""레포지터리 패턴 구현."""
from __future__ import annotations

from typing import Any, Callable, List, Optional, Type, TypeVar

from sqlalchemy import asc, desc

from fastuow.context import EntityQuery, EntitySet, PersistenceContext
from fastuow.core import (
    AbstractRepository,
    AbstractUnitOfWork,
    Entity,
    EntityState,
    InvalidOperationError,
    Key,
    Predicate,
)
from fastuow.logging import get_logger

E = TypeVar("E", bound=Entity)
D = TypeVar("D")

logger = get_logger("fastuow.repo")


class SqlAlchemyRepository(AbstractRepository[E]):
    """SqlAlchemy 세션을 저장소로 하는 :class:`AbstractRepository` 구현입니다.

    레포지터리 자체는 상태를 갖지 않습니다. 모든 조회와 변경은 소유 UoW 의
    컨텍스트를 통해 이뤄지며, 변경 추적도 컨텍스트가 담당합니다.
    """

    def __init__(self, entity_class: Type[E], uow: AbstractUnitOfWork):
        """임의의 엔티티 타입 E 와 UoW 를 받아 E 에 대한 Repository 를 초기화합니다."""
        super().__init__()
        self.entity_class = entity_class
        self.uow = uow

    def __repr__(self) -> str:
        return f"SqlAlchemyRepository[{self.entity_class.__name__}]"

    @property
    def context(self) -> PersistenceContext:
        """소유 UoW 의 컨텍스트. UoW 가 해제되었으면 :class:`DisposedError` 가 발생합니다."""
        return self.uow.context

    @property
    def entity_set(self) -> EntitySet[E]:
        return self.context.set(self.entity_class)

    def get_by_id(self, key: Key) -> Optional[E]:
        return self.entity_set.find(key)

    async def get_by_id_async(self, key: Key) -> Optional[E]:
        return await self.entity_set.find_async(key)

    def query(
        self,
        predicate: Optional[Predicate] = None,
        order_by: Any = None,
        descending: bool = False,
    ) -> EntityQuery[E]:
        """지연 평가되는 쿼리를 리턴합니다.

        Args:
            predicate: ``User.age > 20`` 같은 조건. 생략하면 전체를 대상으로 합니다.
            order_by: 정렬 기준 컬럼.
            descending: ``True`` 면 내림차순으로 정렬합니다.
        """
        query = self.entity_set.query(predicate)
        if order_by is not None:
            query = query.order_by(desc(order_by) if descending else asc(order_by))
        return query

    def find(self, predicate: Optional[Predicate] = None) -> Optional[E]:
        return self.query(predicate).first()

    async def find_async(self, predicate: Optional[Predicate] = None) -> Optional[E]:
        return await self.query(predicate).first_async()

    def find_as(self, predicate: Optional[Predicate], mapper: Callable[[E], D]) -> Optional[D]:
        """조건에 맞는 첫번째 엔티티를 ``mapper`` 로 변환해 리턴합니다.

        일치하는 엔티티가 없으면 ``None`` 을 리턴하고, ``mapper`` 에서 발생한
        예외는 그대로 전달됩니다.
        """
        entity = self.find(predicate)
        return mapper(entity) if entity is not None else None

    async def find_as_async(
        self, predicate: Optional[Predicate], mapper: Callable[[E], D]
    ) -> Optional[D]:
        entity = await self.find_async(predicate)
        return mapper(entity) if entity is not None else None

    def find_all(self, predicate: Optional[Predicate] = None) -> List[E]:
        return self.query(predicate).all()

    async def find_all_async(self, predicate: Optional[Predicate] = None) -> List[E]:
        return await self.query(predicate).all_async()

    def insert(self, entity: E, submit: bool = True) -> E:
        """신규 엔티티를 추가합니다.

        ``submit`` 이 ``True`` 이면 바로 저장하므로 DB가 생성한 키가 채워진
        상태로 리턴됩니다. ``False`` 이면 다음 저장 때까지 보류됩니다.
        """
        self.entity_set.add(entity)
        if submit:
            self.save_changes()
        return entity

    async def insert_async(self, entity: E, submit: bool = True) -> E:
        self.entity_set.add(entity)
        if submit:
            await self.save_changes_async()
        return entity

    def _attach_if_detached(self, entity: E) -> None:
        if entity is None:
            raise InvalidOperationError(
                f"cannot delete a None {self.entity_class.__name__} reference"
            )
        if self.context.entry(entity).state is EntityState.DETACHED:
            self.entity_set.attach(entity)

    def delete(self, entity: E, submit: bool = True) -> None:
        """엔티티를 삭제합니다. 추적되지 않는 엔티티는 먼저 attach 합니다."""
        self._attach_if_detached(entity)
        self.entity_set.remove(entity)
        if submit:
            self.save_changes()

    async def delete_async(self, entity: E, submit: bool = True) -> None:
        self._attach_if_detached(entity)
        await self.entity_set.remove_async(entity)
        if submit:
            await self.save_changes_async()

    def delete_by_id(self, key: Key, submit: bool = True) -> None:
        """기본키로 엔티티를 찾아 삭제합니다.

        해당 키의 엔티티가 없으면 아무 것도 하지 않습니다.
        """
        entity = self.get_by_id(key)
        if entity is None:
            logger.debug("delete %s(%r): nothing to delete", self.entity_class.__name__, key)
            return
        self.delete(entity, submit)

    async def delete_by_id_async(self, key: Key, submit: bool = True) -> None:
        entity = await self.get_by_id_async(key)
        if entity is None:
            logger.debug("delete %s(%r): nothing to delete", self.entity_class.__name__, key)
            return
        await self.delete_async(entity, submit)

    def _mark_modified(self, entity: E) -> None:
        if entity is None:
            raise InvalidOperationError(
                f"cannot update a None {self.entity_class.__name__} reference"
            )
        self.entity_set.attach(entity)
        self.context.mark_modified(entity)

    def update(self, entity: E, submit: bool = True) -> int:
        """엔티티 전체 필드를 변경된 것으로 표시합니다.

        Returns:
            ``submit`` 이 ``True`` 이면 반영된 엔티티 수, 아니면 ``0``.
        """
        self._mark_modified(entity)
        return self.save_changes() if submit else 0

    async def update_async(self, entity: E, submit: bool = True) -> int:
        self._mark_modified(entity)
        return await self.save_changes_async() if submit else 0

    def save_changes(self) -> int:
        return self.context.save_changes()

    async def save_changes_async(self) -> int:
        return await self.context.save_changes_async()
