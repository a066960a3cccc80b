from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    # Render/Heroku hand out 'postgres://', SQLAlchemy wants 'postgresql://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _enable_sqlite_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Database:
    """The relational store handle.

    Built once at startup and handed to the schema manager and the repository,
    so nothing in the package reaches for a module-level engine.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = normalize_database_url(url)
        is_sqlite = self.url.startswith("sqlite")

        if is_sqlite:
            database = make_url(self.url).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            self.url,
            echo=echo,
            # "check_same_thread" is ONLY for SQLite
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_wal)

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def session(self) -> Session:
        return self._session_factory()

    def dispose(self) -> None:
        self.engine.dispose()
