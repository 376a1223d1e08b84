"""영속성 컨텍스트 모듈.

:class:`PersistenceContext` 는 SqlAlchemy 세션 하나와 :class:`~fastuow.tracking.ChangeTracker`
를 소유하고, 엔티티 타입별 컬렉션 뷰(:class:`EntitySet`)와 지연 평가 쿼리
(:class:`EntityQuery`)를 제공합니다.

동기 :class:`~sqlalchemy.orm.Session` 으로 만든 컨텍스트는 동기/비동기 API 를 모두
지원합니다. :class:`~sqlalchemy.ext.asyncio.AsyncSession` 으로 만든 컨텍스트에서
저장소 I/O 가 필요한 동기 작업은 이벤트 루프를 막는 대신
:class:`~fastuow.core.InvalidOperationError` 를 발생시킵니다.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Generic, Iterator, Optional, Type, TypeVar, Union

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import InvalidRequestError, NoInspectionAvailable, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, make_transient_to_detached
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.util import identity_key
from sqlalchemy.sql import Select

from fastuow.core import (
    DisposedError,
    EntityState,
    InvalidOperationError,
    Key,
    PersistenceError,
    Predicate,
)
from fastuow.logging import get_logger
from fastuow.tracking import ChangeTracker, EntityEntry, identity_of

E = TypeVar("E")

logger = get_logger("fastuow.context")


@contextmanager
def persistence_errors(action: str) -> Generator[None, None, None]:
    """블록 안에서 발생한 SqlAlchemy 에러를 :class:`PersistenceError` 로 전달합니다."""
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"{action} failed: {e}", e) from e


@contextmanager
def attach_errors() -> Generator[None, None, None]:
    """세션에 인스턴스를 붙이다 발생한 에러를 :class:`InvalidOperationError` 로 전달합니다."""
    try:
        yield
    except InvalidRequestError as e:
        raise InvalidOperationError(str(e)) from e


class PersistenceContext:
    """SqlAlchemy 세션을 감싼 영속성 컨텍스트."""

    def __init__(self, session: Union[Session, AsyncSession]):
        self.async_session: Optional[AsyncSession] = None
        self.session: Session
        if isinstance(session, AsyncSession):
            self.async_session = session
            self.session = session.sync_session
        else:
            self.session = session

        self.tracker = ChangeTracker(self.session)
        self._sets: dict[Type[Any], EntitySet] = {}
        self._disposed = False

    def __repr__(self) -> str:
        kind = "async" if self.is_async else "sync"
        return f"PersistenceContext[{kind}, tracked={len(self.tracker)}]"

    @property
    def is_async(self) -> bool:
        return self.async_session is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("persistence context has been disposed")

    def require_sync(self, operation: str) -> None:
        """저장소 I/O 가 필요한 동기 작업을 비동기 세션에서 호출했는지 검사합니다."""
        self.check_disposed()
        if self.is_async:
            raise InvalidOperationError(
                f"{operation}() needs store I/O on an AsyncSession;"
                f" use {operation}_async() instead"
            )

    def set(self, entity_class: Type[E]) -> EntitySet[E]:
        """``entity_class`` 의 컬렉션 뷰를 리턴합니다."""
        self.check_disposed()
        if entity_class not in self._sets:
            self._sets[entity_class] = EntitySet(self, entity_class)
        return self._sets[entity_class]

    def entry(self, entity: Any) -> EntityEntry:
        """엔티티의 추적 엔트리(상태 핸들)를 리턴합니다."""
        self.check_disposed()
        if entity is None:
            raise InvalidOperationError("entity must not be None")
        return self.tracker.entry(entity)

    def mark_modified(self, entity: Any) -> EntityEntry:
        """추적 중인 엔티티의 로드된 모든 컬럼을 변경된 것으로 표시합니다.

        실제로 바뀐 필드만이 아니라 기본키를 제외한 전체 필드가 UPDATE 됩니다.
        삭제 표시된 엔티티는 삭제를 취소하고 ``MODIFIED`` 가 됩니다. 아직 저장되지
        않은 ``ADDED`` 엔티티는 현재 값으로 INSERT 되므로 상태를 바꾸지 않습니다.
        """
        entry = self.entry(entity)
        if entry.state is EntityState.DETACHED:
            raise InvalidOperationError("entity is not tracked; attach it first")
        if entry.state is EntityState.ADDED:
            return entry
        if entry.state is EntityState.DELETED:
            # 아직 flush 되지 않은 삭제는 다시 add 하면 취소됩니다.
            with attach_errors():
                self.session.add(entity)

        state = inspect(entity)
        for prop in state.mapper.column_attrs:
            if prop.key not in state.dict:
                continue
            if any(getattr(col, "primary_key", False) for col in prop.columns):
                continue
            flag_modified(entity, prop.key)

        return self.tracker.track(entity, EntityState.MODIFIED)

    def _begin_save(self) -> int:
        self.check_disposed()
        self.tracker.detect_changes()
        pending = len(self.tracker.pending())
        logger.debug("save: %d pending changes", pending)
        return pending

    def _fail_save(self, e: SQLAlchemyError) -> PersistenceError:
        self.tracker.reset()
        return PersistenceError(f"flush failed: {e}", e)

    def save_changes(self) -> int:
        """추적 중인 모든 변경을 하나의 트랜잭션으로 반영하고 반영된 엔티티 수를 리턴합니다."""
        self.require_sync("save_changes")
        pending = self._begin_save()
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self._fail_save(e) from e

        self.tracker.accept_changes()
        return pending

    async def save_changes_async(self) -> int:
        pending = self._begin_save()
        try:
            if self.async_session is not None:
                await self.async_session.commit()
            else:
                self.session.commit()
        except SQLAlchemyError as e:
            if self.async_session is not None:
                await self.async_session.rollback()
            else:
                self.session.rollback()
            raise self._fail_save(e) from e

        self.tracker.accept_changes()
        return pending

    def dispose(self) -> None:
        """세션을 닫고 추적 상태를 버립니다. 여러번 호출해도 안전합니다."""
        if self._disposed:
            return
        if self.is_async:
            raise InvalidOperationError(
                "an AsyncSession must be released with dispose_async()"
            )

        self._disposed = True
        self.tracker.reset()
        self._sets.clear()
        self.session.close()

    async def dispose_async(self) -> None:
        if self._disposed:
            return

        self._disposed = True
        self.tracker.reset()
        self._sets.clear()
        if self.async_session is not None:
            await self.async_session.close()
        else:
            self.session.close()


class EntitySet(Generic[E]):
    """컨텍스트 안의 엔티티 타입 하나에 대한 컬렉션 뷰."""

    def __init__(self, context: PersistenceContext, entity_class: Type[E]):
        try:
            self.mapper = inspect(entity_class)
        except NoInspectionAvailable as e:
            raise InvalidOperationError(f"{entity_class!r} is not a mapped class") from e

        self.context = context
        self.entity_class = entity_class

    def __repr__(self) -> str:
        return f"EntitySet[{self.entity_class.__name__}]"

    def _find_tracked(self, key: Key) -> tuple[bool, Optional[E]]:
        self.context.check_disposed()
        entry = self.context.tracker.find(self.entity_class, key)
        if entry is None:
            return False, None
        if entry.state is EntityState.DELETED:
            return True, None
        return True, entry.entity

    def find(self, key: Key) -> Optional[E]:
        """추적 중인 엔티티를 먼저 찾고, 없으면 저장소에서 조회합니다."""
        found, entity = self._find_tracked(key)
        if found:
            return entity

        self.context.require_sync("find")
        with persistence_errors("find"):
            return self.context.session.get(self.entity_class, key)

    async def find_async(self, key: Key) -> Optional[E]:
        found, entity = self._find_tracked(key)
        if found:
            return entity

        with persistence_errors("find"):
            if self.context.async_session is not None:
                return await self.context.async_session.get(self.entity_class, key)
            return self.context.session.get(self.entity_class, key)

    def query(self, predicate: Optional[Predicate] = None) -> EntityQuery[E]:
        self.context.check_disposed()
        statement = select(self.entity_class)
        if predicate is not None:
            statement = statement.where(predicate)
        return EntityQuery(self.context, statement)

    def add(self, entity: E) -> EntityEntry:
        """신규 엔티티로 등록합니다. 다음 flush 때 INSERT 됩니다."""
        entry = self.context.entry(entity)
        if entry.state is EntityState.ADDED:
            return entry
        if entry.state is not EntityState.DETACHED:
            raise InvalidOperationError(
                f"cannot add an entity in state {entry.state.value!r}"
            )
        if inspect(entity).has_identity:
            raise InvalidOperationError(
                "entity was already persisted; use update() to reattach it"
            )

        # 키가 충돌하면 세션에 붙이기 전에 거절해야 세션에 고아 인스턴스가 남지 않습니다.
        self._check_conflict(entity)
        with attach_errors():
            self.context.session.add(entity)
        return self.context.tracker.track(entity, EntityState.ADDED)

    def attach(self, entity: E) -> EntityEntry:
        """분리된(detached) 엔티티를 변경 없음(``UNCHANGED``) 상태로 추적하기 시작합니다."""
        entry = self.context.entry(entity)
        if entry.state is not EntityState.DETACHED:
            return entry

        if identity_of(entity) is None:
            raise InvalidOperationError("cannot attach an entity without a primary key")
        self._check_conflict(entity)

        state = inspect(entity)
        if state.transient:
            make_transient_to_detached(entity)

        with attach_errors():
            self.context.session.add(entity)
        return self.context.tracker.track(entity, EntityState.UNCHANGED)

    def _check_conflict(self, entity: E) -> None:
        identity = identity_of(entity)
        if identity is None:
            return
        if (
            self.context.tracker.find(type(entity), identity) is not None
            or identity_key(type(entity), identity) in self.context.session.identity_map
        ):
            raise InvalidOperationError(
                f"another instance with key {identity!r} is already tracked"
            )

    def _remove(self, entity: E) -> Optional[EntityEntry]:
        entry = self.context.entry(entity)
        if entry.state is EntityState.DETACHED:
            raise InvalidOperationError("entity is not tracked; attach it first")
        if entry.state is EntityState.ADDED:
            # 아직 저장되지 않은 INSERT 를 취소합니다.
            self.context.session.expunge(entity)
            self.context.tracker.untrack(entity)
            return None
        return entry

    def remove(self, entity: E) -> None:
        """엔티티를 삭제 대상으로 표시합니다."""
        entry = self._remove(entity)
        if entry is None:
            return

        self.context.require_sync("remove")
        with persistence_errors("remove"):
            self.context.session.delete(entity)
        entry.state = EntityState.DELETED

    async def remove_async(self, entity: E) -> None:
        entry = self._remove(entity)
        if entry is None:
            return

        with persistence_errors("remove"):
            if self.context.async_session is not None:
                await self.context.async_session.delete(entity)
            else:
                self.context.session.delete(entity)
        entry.state = EntityState.DELETED


class EntityQuery(Generic[E]):
    """지연 평가되는 조합 가능한 쿼리.

    :meth:`all`, :meth:`first`, :meth:`count` 나 반복(iteration)을 하기 전에는
    실행되지 않습니다.

    Example: ::

        adults = repo.query(User.age >= 20).order_by(User.name).limit(10)
        for user in adults:
            ...
    """

    def __init__(self, context: PersistenceContext, statement: Select):
        self.context = context
        self._statement = statement

    def __repr__(self) -> str:
        return f"EntityQuery[{self._statement}]"

    @property
    def statement(self) -> Select:
        """내부 SqlAlchemy ``Select`` 구문."""
        return self._statement

    def _derive(self, statement: Select) -> EntityQuery[E]:
        return EntityQuery(self.context, statement)

    def where(self, *criteria: Any) -> EntityQuery[E]:
        return self._derive(self._statement.where(*criteria))

    def order_by(self, *clauses: Any) -> EntityQuery[E]:
        return self._derive(self._statement.order_by(*clauses))

    def limit(self, limit: int) -> EntityQuery[E]:
        return self._derive(self._statement.limit(limit))

    def offset(self, offset: int) -> EntityQuery[E]:
        return self._derive(self._statement.offset(offset))

    def _count_statement(self) -> Select:
        return select(func.count()).select_from(self._statement.subquery())

    def __iter__(self) -> Iterator[E]:
        return iter(self.all())

    def all(self) -> list[E]:
        self.context.require_sync("all")
        with persistence_errors("query"):
            return list(self.context.session.scalars(self._statement).all())

    def first(self) -> Optional[E]:
        self.context.require_sync("first")
        with persistence_errors("query"):
            return self.context.session.scalars(self._statement.limit(1)).first()

    def count(self) -> int:
        self.context.require_sync("count")
        with persistence_errors("query"):
            return self.context.session.scalar(self._count_statement()) or 0

    async def all_async(self) -> list[E]:
        self.context.check_disposed()
        with persistence_errors("query"):
            if self.context.async_session is not None:
                result = await self.context.async_session.scalars(self._statement)
                return list(result.all())
            return list(self.context.session.scalars(self._statement).all())

    async def first_async(self) -> Optional[E]:
        self.context.check_disposed()
        statement = self._statement.limit(1)
        with persistence_errors("query"):
            if self.context.async_session is not None:
                result = await self.context.async_session.scalars(statement)
                return result.first()
            return self.context.session.scalars(statement).first()

    async def count_async(self) -> int:
        self.context.check_disposed()
        with persistence_errors("query"):
            if self.context.async_session is not None:
                count = await self.context.async_session.scalar(self._count_statement())
            else:
                count = self.context.session.scalar(self._count_statement())
        return count or 0
