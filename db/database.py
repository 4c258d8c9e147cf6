"""Database connection and session management"""

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
import os
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from db.exceptions import DatabaseNotInitializedError
from db.migrations import run_migrations

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/watch-history.db"


def get_database_url() -> str:
    """
    Get database URL from environment variables.
    Supports a full DATABASE_URL or a plain file path in WATCH_HISTORY_DB_PATH.
    Sync SQLite URLs are converted to the aiosqlite driver.
    """
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        # Convert sqlite:// to sqlite+aiosqlite:// for async SQLAlchemy
        if database_url.startswith("sqlite://"):
            database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        elif database_url.startswith("sqlite+pysqlite://"):
            database_url = database_url.replace("sqlite+pysqlite://", "sqlite+aiosqlite://", 1)
        return database_url

    db_path = Path(os.getenv("WATCH_HISTORY_DB_PATH", DEFAULT_DB_PATH))
    return f"sqlite+aiosqlite:///{db_path}"


def _echo_from_env() -> bool:
    return os.getenv("DATABASE_ECHO", "false").lower() in ("true", "1")


def _ensure_parent_dir(database_url: str) -> None:
    """Create the directory holding a file-backed SQLite database"""
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):].split("?", 1)[0]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """
    Enable foreign keys and WAL journaling on every new connection, and let
    SQLAlchemy own BEGIN so SAVEPOINTs behave inside bulk transactions.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # disable the driver's implicit BEGIN; emitted below instead
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    Explicit handle on one watch history store.

    Construct it, ``await init()`` to open the engine and migrate the schema,
    pass it to the repositories, and ``await close()`` when done.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        """
        Initialize the store handle

        Args:
            url: SQLAlchemy URL; defaults to the environment (see get_database_url)
            echo: Log every SQL statement; defaults to DATABASE_ECHO
        """
        self.url = url or get_database_url()
        self.echo = _echo_from_env() if echo is None else echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self.schema_version: Optional[int] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseNotInitializedError("Database.init() has not been called")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def init(self) -> "Database":
        """Create the engine, install connection pragmas and run migrations"""
        if self._engine is not None:
            return self

        is_sqlite = self.url.startswith("sqlite")
        if is_sqlite:
            _ensure_parent_dir(self.url)

        self._engine = create_async_engine(self.url, echo=self.echo)
        if is_sqlite:
            _install_sqlite_hooks(self._engine)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            self.schema_version = await run_migrations(self._engine)
        except Exception:
            await self.close()
            raise

        logger.info(f"Watch history store opened at {self.url} (schema v{self.schema_version})")
        return self

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Watch history store closed")

    def session(self) -> AsyncSession:
        """New session bound to this store (use as ``async with db.session() as session``)"""
        if self._session_factory is None:
            raise DatabaseNotInitializedError("Database.init() has not been called")
        return self._session_factory()

    async def healthcheck(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def __aenter__(self) -> "Database":
        return await self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
