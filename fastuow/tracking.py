"""변경 추적(Change tracking) 모듈.

컨텍스트가 추적하는 엔티티 상태를 ``(엔티티 타입, 기본키) -> EntityEntry``
테이블 하나로 명시적으로 관리합니다. 테이블은 :class:`~fastuow.context.PersistenceContext`
만 수정하며, 호출자는 레포지터리/UoW API 를 통해서만 상태를 바꿀 수 있습니다.

아직 키가 없는 신규 엔티티(DB가 키를 생성하는 경우)는 임시 키로 등록되고,
flush 가 성공하면 저장소가 부여한 키로 다시 등록됩니다.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Iterator, NamedTuple, Optional, Type

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from fastuow.core import EntityState, InvalidOperationError
from fastuow.logging import get_logger

logger = get_logger("fastuow.tracking")

PROVISIONAL = "__provisional__"


class EntityKey(NamedTuple):
    """추적 테이블의 키."""

    entity_class: Type[Any]
    identity: tuple

    @property
    def is_provisional(self) -> bool:
        return bool(self.identity) and self.identity[0] == PROVISIONAL


@dataclass
class EntityEntry:
    """추적 중인 엔티티 하나의 레코드."""

    entity: Any
    state: EntityState
    key: Optional[EntityKey] = None


def key_class(entity_class: Type[Any]) -> Type[Any]:
    """상속 계층에서 같은 테이블을 공유하는 클래스들이 같은 키를 갖도록 최상위 매핑 클래스를 리턴합니다."""
    return inspect(entity_class).base_mapper.class_


def normalize_key(key: Any) -> tuple:
    return key if isinstance(key, tuple) else (key,)


def identity_of(entity: Any) -> Optional[tuple]:
    """엔티티의 기본키 튜플. 키가 아직 정해지지 않았으면 ``None``."""
    state = inspect(entity)
    if state.identity is not None:
        return tuple(state.identity)

    values = state.mapper.primary_key_from_instance(entity)
    if any(v is None for v in values):
        return None
    return tuple(values)


class ChangeTracker:
    """:class:`EntityEntry` 테이블.

    ``_entries`` 가 유일한 원본이고, ``_instances`` 는 인스턴스로 엔트리를 되찾기
    위한 보조 인덱스입니다. 엔트리가 엔티티를 강하게 참조하므로 추적 중에는
    ``id()`` 가 재사용되지 않습니다.
    """

    def __init__(self, session: Session):
        self.session = session
        self._entries: dict[EntityKey, EntityEntry] = {}
        self._instances: dict[int, EntityKey] = {}
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EntityEntry]:
        return iter(list(self._entries.values()))

    def key_of(self, entity: Any) -> Optional[EntityKey]:
        identity = identity_of(entity)
        if identity is None:
            return None
        return EntityKey(key_class(type(entity)), identity)

    def find(self, entity_class: Type[Any], key: Any) -> Optional[EntityEntry]:
        """기본키로 추적 중인 엔트리를 찾습니다."""
        return self._entries.get(EntityKey(key_class(entity_class), normalize_key(key)))

    def lookup(self, entity: Any) -> Optional[EntityEntry]:
        """인스턴스로 추적 중인 엔트리를 찾습니다. 없으면 ``None``."""
        key = self._instances.get(id(entity))
        if key is None:
            return None
        entry = self._entries.get(key)
        if entry is None or entry.entity is not entity:
            return None
        return entry

    def entry(self, entity: Any) -> EntityEntry:
        """엔티티의 엔트리를 리턴합니다.

        테이블에 없으면 세션이 알고 있는 상태로부터 추론해 등록합니다.
        세션이 모르는 인스턴스는 등록하지 않고 ``DETACHED`` 엔트리를 리턴합니다.
        """
        found = self.lookup(entity)
        if found:
            return found

        if entity in self.session:
            if inspect(entity).pending:
                return self.track(entity, EntityState.ADDED)
            if entity in self.session.deleted:
                return self.track(entity, EntityState.DELETED)
            modified = self.session.is_modified(entity)
            return self.track(
                entity, EntityState.MODIFIED if modified else EntityState.UNCHANGED
            )

        return EntityEntry(entity, EntityState.DETACHED, self.key_of(entity))

    def track(self, entity: Any, state: EntityState) -> EntityEntry:
        """엔티티를 ``state`` 상태로 등록하거나 상태를 갱신합니다."""
        found = self.lookup(entity)
        if found:
            found.state = state
            return found

        key = self.key_of(entity)
        if key is None:
            key = EntityKey(key_class(type(entity)), (PROVISIONAL, next(self._sequence)))
        elif key in self._entries:
            raise InvalidOperationError(
                "another instance of %s with key %r is already tracked"
                % (key.entity_class.__name__, key.identity)
            )

        entry = EntityEntry(entity, state, key)
        self._entries[key] = entry
        self._instances[id(entity)] = key
        return entry

    def untrack(self, entity: Any) -> None:
        entry = self.lookup(entity)
        if entry and entry.key:
            del self._entries[entry.key]
            del self._instances[id(entity)]

    def detect_changes(self) -> None:
        """세션에서 직접 바뀐 변경을 테이블에 반영합니다.

        로드된 엔티티의 속성을 바로 수정한 경우처럼 API 를 거치지 않은 변경을
        ``MODIFIED`` 로 올립니다.
        """
        for obj in list(self.session.identity_map.values()):
            entry = self.lookup(obj)
            if entry is None:
                if self.session.is_modified(obj):
                    self.track(obj, EntityState.MODIFIED)
            elif entry.state is EntityState.UNCHANGED and self.session.is_modified(obj):
                entry.state = EntityState.MODIFIED

        for obj in list(self.session.new):
            if self.lookup(obj) is None:
                self.track(obj, EntityState.ADDED)

        for obj in list(self.session.deleted):
            self.track(obj, EntityState.DELETED)

    def pending(self) -> list[EntityEntry]:
        return [it for it in self._entries.values() if it.state.is_pending]

    def accept_changes(self) -> None:
        """flush 성공 후 호출됩니다.

        삭제된 엔트리는 지우고, 나머지는 ``UNCHANGED`` 로 바꾸면서 저장소가
        생성한 키로 다시 등록합니다.
        """
        entries, self._entries, self._instances = self._entries, {}, {}

        for entry in entries.values():
            if entry.state is EntityState.DELETED:
                continue

            entry.state = EntityState.UNCHANGED
            entry.key = self.key_of(entry.entity) or entry.key
            self._entries[entry.key] = entry
            self._instances[id(entry.entity)] = entry.key

        logger.debug("accepted changes, %d entities tracked", len(self._entries))

    def reset(self) -> None:
        """모든 엔트리를 버립니다. 세션 롤백이나 해제 뒤에 호출됩니다."""
        self._entries.clear()
        self._instances.clear()
