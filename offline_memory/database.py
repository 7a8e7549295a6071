"""
Database Manager - owns the SQLite handle for one store file.

Every operation gets a fresh connection (NullPool), so concurrent hook
invocations never share a handle and never assume exclusive access.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlalchemy import event, text
from contextlib import asynccontextmanager
from pathlib import Path
import logging

from .exceptions import StoreError
from .models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages the SQLite database connection.

    init_db() is idempotent: creates tables, then applies pending migrations.
    It is safe to call on every hook invocation.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_url = f"sqlite+aiosqlite:///{self.db_path}"
        self._migrated = False
        self._initialized = False
        self._engine = None
        self._session_factory = None

    def _get_engine(self):
        """Lazy engine creation - ensures it's created in the right event loop context."""
        if self._engine is None:
            self._engine = create_async_engine(
                self.db_url,
                connect_args={"check_same_thread": False, "timeout": 30},
                poolclass=NullPool,
            )

            @event.listens_for(self._engine.sync_engine, "connect")
            def set_sqlite_pragmas(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA temp_store=MEMORY")
                cursor.close()

            self._session_factory = async_sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
                class_=AsyncSession
            )
        return self._engine

    @property
    def engine(self):
        return self._get_engine()

    @property
    def SessionLocal(self):
        self._get_engine()
        return self._session_factory

    def _run_migrations(self):
        """Run schema migrations (sync sqlite3, outside the async engine)."""
        if self._migrated:
            return

        from .migrations import run_migrations
        count, applied = run_migrations(str(self.db_path))
        if count > 0:
            logger.info(f"Applied {count} migration(s): {applied}")

        self._migrated = True

    async def init_db(self):
        """Create tables and run migrations. Raises StoreError on failure."""
        if self._initialized:
            return

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._run_migrations()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Could not open store at {self.db_path}: {e}") from e

        self._initialized = True
        logger.debug(f"Database initialized at {self.db_path}")

    @asynccontextmanager
    async def get_session(self):
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def vacuum(self) -> None:
        """Reclaim free pages. VACUUM cannot run inside a transaction."""
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text("VACUUM"))

    async def close(self):
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
