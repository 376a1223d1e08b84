from typing import Optional


class FastUoWError(Exception):
    """``FastUoW`` 와 관련된 모든 에러의 기본 클래스."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    ...


class PersistenceError(FastUoWError):
    """저장소 접근 또는 flush 가 실패했을 때 발생하는 에러.

    제약조건 위반, 연결 끊김, 동시성 충돌 등 SqlAlchemy 에서 발생한 원래 예외는
    :attr:`orig` 와 ``__cause__`` 로 그대로 전달됩니다.
    """

    def __init__(self, message: str, orig: Optional[BaseException] = None):
        super().__init__(message)
        self.orig = orig


class InvalidOperationError(FastUoWError):
    """현재 상태에서 수행할 수 없는 작업을 요청했을 때 발생하는 에러.

    예: ``None`` 엔티티 삭제, 이미 추적 중인 키와 충돌하는 attach.
    """

    ...


class DisposedError(FastUoWError):
    """이미 해제(dispose)된 UnitOfWork 나 컨텍스트를 사용하려 할 때 발생하는 에러."""

    ...
