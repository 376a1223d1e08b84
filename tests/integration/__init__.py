from typing import Optional, cast

from sqlalchemy import text
from sqlalchemy.orm import Session

from tests import random_email, random_name


def insert_user(
    session: Session, name: str = "", age: Optional[int] = None, commit: bool = True
) -> int:
    if not name:
        name = random_name()

    session.execute(
        text("INSERT INTO users (name, email, age) VALUES (:name, :email, :age)"),
        dict(name=name, email=random_email(name), age=age),
    )
    [[user_id]] = session.execute(
        text("SELECT id FROM users WHERE name=:name"), dict(name=name)
    )
    if commit:
        session.commit()

    return cast(int, user_id)


def count_rows(session: Session, table: str) -> int:
    [[count]] = session.execute(text(f"SELECT count(*) FROM {table}"))
    return cast(int, count)
