"""FastUoW - SqlAlchemy 위에서 동작하는 제네릭 Repository / UnitOfWork 구현."""
from fastuow.config import Config, FastUoW  # noqa
from fastuow.context import EntityQuery, EntitySet, PersistenceContext  # noqa
from fastuow.core import (  # noqa
    AbstractRepository,
    AbstractUnitOfWork,
    DisposedError,
    EntityState,
    FastUoWError,
    InvalidOperationError,
    PersistenceError,
)
from fastuow.repo import SqlAlchemyRepository  # noqa
from fastuow.uow import RepositoryRegistry, SqlAlchemyUnitOfWork  # noqa
