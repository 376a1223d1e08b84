from .errors import (  # noqa
    DisposedError,
    FastUoWError,
    InvalidOperationError,
    PersistenceError,
)
from .models import (  # noqa
    AbstractRepository,
    AbstractUnitOfWork,
    Entity,
    EntityState,
    Key,
    Predicate,
    RepoMakerDict,
    RepoMakerFunc,
)
