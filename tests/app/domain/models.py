"""테스트용 도메인 모델."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class User:
    """DB가 키(``id``)를 생성하는 엔티티입니다."""

    name: str
    email: Optional[str] = None
    age: Optional[int] = None
    id: Optional[int] = None  # pylint: disable=invalid-name
    """매핑된 DB가 할당한 고유 ID. 세션 commit이 될 경우에만 값이 부여됩니다."""


@dataclass
class Tag:
    """``(owner, label)`` 복합키를 갖는 엔티티입니다."""

    owner: str
    label: str
    color: Optional[str] = None


@dataclass
class UserSummary:
    """:class:`User` 를 변환(projection)한 DTO."""

    name: str
    contact: str
