"""기본 환경 설정."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Type

from sqlalchemy.pool import Pool, StaticPool

SECTION = "fastuow"


def is_memory_sqlite(url: str) -> bool:
    """메모리 SQLite URL 인지 여부. 연결마다 DB가 새로 생기므로 단일 연결 풀이 필요합니다."""
    scheme, _, rest = url.partition("://")
    return scheme.split("+")[0] == "sqlite" and rest in ("", "/:memory:")


@dataclass
class FastUoWSetupConfig:
    name: str
    db_url: Optional[str] = None
    async_db_url: Optional[str] = None
    echo: bool = False


def load_setupcfg(path: Path) -> Optional[FastUoWSetupConfig]:
    if (path / "setup.cfg").exists():
        # 경로에 "setup.cfg" 파일이 있다면 [fastuow] 섹션에서
        # name, db_url 등의 정보를 읽습니다.
        config = ConfigParser()
        config.read(path / "setup.cfg")
        if SECTION in config:
            section = config[SECTION]
            return FastUoWSetupConfig(
                name=section.get("name", path.absolute().name),
                db_url=section.get("db_url"),
                async_db_url=section.get("async_db_url"),
                echo=section.getboolean("echo", fallback=False),
            )
    return None


@dataclass
class FastUoW:
    """FastUoW 설정."""

    name: str
    db_url: Optional[str] = None
    async_db_url: Optional[str] = None
    echo: bool = False
    is_implicit_name: bool = True
    """setup.cfg 없이 암시적으로 부여된 이름인지 여부."""

    @staticmethod
    def load_from_config(path: Path = Path(".")) -> FastUoW:
        """``setup.cfg`` 의 ``[fastuow]`` 섹션을 읽어 설정을 만듭니다.

        파일이나 섹션이 없으면 디렉토리 이름을 이름으로 하는 기본 설정을 리턴합니다.
        """
        cfg = load_setupcfg(path)
        if not cfg:
            return Config(name=path.absolute().name)

        return Config(
            name=cfg.name,
            db_url=cfg.db_url,
            async_db_url=cfg.async_db_url,
            echo=cfg.echo,
            is_implicit_name=False,
        )

    def get_db_url(self) -> str:
        """SqlAlchemy 에서 사용 가능한 형식의 DB URL을 리턴합니다.

        다음처럼 OS 환경변수를 이용하도록 재정의할 수도 있습니다.

        if self.mode == "prod":
            db_host = os.environ.get("DB_HOST", "localhost")
            db_user = os.environ.get("DB_USER", "postgres")
            db_pass = os.environ.get("DB_PASS", "password")
            db_name = os.environ.get("DB_NAME", db_user)
            return f"postgresql://{db_user}:{db_pass}@{db_host}/{db_name}"
        else:
            return f"sqlite://"
        """
        if self.db_url:
            return self.db_url
        raise NotImplementedError

    def get_async_db_url(self) -> str:
        """비동기 드라이버용 DB URL (예: ``sqlite+aiosqlite://``)."""
        if self.async_db_url:
            return self.async_db_url
        raise NotImplementedError

    def get_db_connect_args(self, url: Optional[str] = None) -> dict[str, Any]:
        """Get db connection arguments for SQLAlchemy's engine creation.

        ``url`` 을 생략하면 :meth:`get_db_url` 을 기준으로 합니다.

        Example:
            For SQLite dbs, it could be: ::

                {'check_same_thread': False}
        """
        if (url or self.get_db_url()).startswith("sqlite"):
            return {"check_same_thread": False}
        return {}

    def get_db_poolclass(self, url: Optional[str] = None) -> Optional[Type[Pool]]:
        """Get db poolclass arguemnt for SQLAlchemy's engine creation.

        Returns:
            A pool class. In-memory SQLite needs a single shared connection.
        """
        if is_memory_sqlite(url or self.get_db_url()):
            return StaticPool
        return None


class Config(FastUoW):
    """기본 설정. URL 이 없으면 메모리 SQLite 를 사용합니다."""

    def get_db_url(self) -> str:
        return self.db_url or "sqlite://"

    def get_async_db_url(self) -> str:
        return self.async_db_url or "sqlite+aiosqlite://"


_config: Optional[FastUoW] = None


def get_config() -> FastUoW:
    """현재 프로세스의 기본 설정을 리턴합니다. 처음 호출될 때 ``setup.cfg`` 를 읽습니다."""
    global _config  # pylint: disable=global-statement,invalid-name

    if not _config:
        _config = FastUoW.load_from_config()
    return _config


def set_config(config: Optional[FastUoW]) -> None:
    global _config  # pylint: disable=global-statement,invalid-name
    _config = config
