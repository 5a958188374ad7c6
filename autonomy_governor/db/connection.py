"""
Database Connection Manager
===========================

Handles the async connection to the governor's SQLite database.

There is no module-level engine: each Database object owns its engine and
session maker, and every store operation opens its own session from it.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from autonomy_governor.db.models import Base


class Database:
    """An async SQLite database with the governor schema."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def url(self) -> str:
        return f"sqlite+aiosqlite:///{self.db_path}"

    async def init(self) -> "Database":
        """Create the engine and any missing tables."""
        if self._engine is not None:
            return self

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_async_engine(self.url, echo=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_maker = async_sessionmaker(self._engine, expire_on_commit=False)
        return self

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a fresh session; never share it between tasks."""
        if self._session_maker is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        async with self._session_maker() as session:
            yield session

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None


async def init_db(db_path: Path | str) -> Database:
    """
    Initialize a database at `db_path` and create tables if they don't exist.
    """
    return await Database(db_path).init()
