from __future__ import annotations

import threading

import pytest

from fastuow.context import PersistenceContext
from fastuow.core import DisposedError, InvalidOperationError
from fastuow.orm import SessionMaker, set_default_sessionmaker
from fastuow.repo import SqlAlchemyRepository
from fastuow.uow import SqlAlchemyUnitOfWork
from tests.app.domain.models import Tag, User
from tests.integration import count_rows


def test_repository_is_cached_per_entity_type(uow: SqlAlchemyUnitOfWork):
    users = uow.repository(User)

    assert uow.repository(User) is users
    assert uow[User] is users
    assert uow.repository(Tag) is not users


def test_repositories_are_not_shared_between_uows(get_session: SessionMaker):
    with SqlAlchemyUnitOfWork(get_session=get_session) as uow1:
        with SqlAlchemyUnitOfWork(get_session=get_session) as uow2:
            assert uow1.repository(User) is not uow2.repository(User)


def test_concurrent_first_access_yields_one_repository(uow: SqlAlchemyUnitOfWork):
    barrier = threading.Barrier(8)
    results: list = []

    def worker():
        barrier.wait()
        results.append(uow.repository(User))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(it is results[0] for it in results)
    assert len(uow.repos) == 1


def test_save_flushes_changes_queued_by_every_repository(uow: SqlAlchemyUnitOfWork):
    uow.repository(User).insert(User("kim"), submit=False)
    uow.repository(Tag).insert(Tag("kim", "python"), submit=False)

    # 어느 레포지터리에서 저장해도 공유 컨텍스트 전체가 반영됩니다.
    assert uow.repository(Tag).save_changes() == 2
    assert uow.save() == 0


def test_uow_can_be_built_on_injected_context(get_session: SessionMaker, session):
    context = PersistenceContext(get_session())

    with SqlAlchemyUnitOfWork(context) as uow:
        assert uow.context is context
        uow.repository(User).insert(User("kim"))

    assert context.disposed
    assert count_rows(session, "users") == 1


def test_uow_uses_default_sessionmaker(get_session: SessionMaker):
    set_default_sessionmaker(get_session)
    try:
        with SqlAlchemyUnitOfWork() as uow:
            assert uow.repository(User).insert(User("kim")).id is not None
    finally:
        set_default_sessionmaker(None)


def test_register_repository(uow: SqlAlchemyUnitOfWork):
    custom = SqlAlchemyRepository(User, uow)

    uow.register_repository(User, custom)

    assert uow.repository(User) is custom
    with pytest.raises(InvalidOperationError):
        uow.register_repository(User, SqlAlchemyRepository(User, uow))


def test_disposed_uow_rejects_every_operation(get_session: SessionMaker):
    uow = SqlAlchemyUnitOfWork(get_session=get_session)
    users = uow.repository(User)

    uow.dispose()
    uow.dispose()  # 여러번 호출해도 안전합니다.

    assert uow.disposed
    with pytest.raises(DisposedError):
        uow.repository(Tag)
    with pytest.raises(DisposedError):
        uow.save()
    with pytest.raises(DisposedError):
        users.get_by_id(1)
    with pytest.raises(DisposedError):
        users.insert(User("kim"), submit=False)
    with pytest.raises(DisposedError):
        users.find_all()


def test_disposed_context_rejects_operations(get_session: SessionMaker):
    context = PersistenceContext(get_session())
    users = context.set(User)
    query = users.query()

    context.dispose()

    with pytest.raises(DisposedError):
        context.set(User)
    with pytest.raises(DisposedError):
        users.find(1)
    with pytest.raises(DisposedError):
        query.all()
    with pytest.raises(DisposedError):
        context.save_changes()


def test_with_block_discards_unsaved_work_on_error(get_session: SessionMaker, session):
    class MyException(Exception):
        pass

    with pytest.raises(MyException):
        with SqlAlchemyUnitOfWork(get_session=get_session) as uow:
            uow.repository(User).insert(User("kim"), submit=False)
            raise MyException()

    assert uow.disposed
    assert count_rows(session, "users") == 0


def test_not_mapped_class_is_rejected(uow: SqlAlchemyUnitOfWork):
    class NotMapped:
        pass

    with pytest.raises(InvalidOperationError):
        uow.repository(NotMapped).get_by_id(1)
