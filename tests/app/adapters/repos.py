from typing import Optional

from fastuow.repo import SqlAlchemyRepository

from ..domain.models import User


class SqlAlchemyUserRepository(SqlAlchemyRepository[User]):
    def __repr__(self):
        return self.__class__.__name__

    def get_by_name(self, name: str) -> Optional[User]:
        return self.find(User.name == name)
