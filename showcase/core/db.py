"""Async SQLAlchemy database manager and catalog persistence helpers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from showcase.core.models import Base, CacheEntry, Project, _new_id

LOGGER = logging.getLogger(__name__)

PROJECT_MUTABLE_FIELDS = (
    "order",
    "branch",
    "season",
    "date",
    "creator",
    "creator_lower",
    "link",
    "link_lower",
    "description",
    "screenshot",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(slots=True)
class ProjectRecord:
    """Write model for one project row, plus the source block hash."""

    identifier: str
    branch: str
    season: int
    date: str
    order: int
    link: str
    creator: str | None
    description: str
    screenshot: str | None
    block_hash: str

    def row(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "branch": self.branch,
            "season": self.season,
            "date": self.date,
            "order": self.order,
            "creator": self.creator,
            "creator_lower": self.creator.lower() if self.creator is not None else None,
            "link": self.link,
            "link_lower": self.link.lower(),
            "description": self.description,
            "screenshot": self.screenshot,
        }


class DatabaseManager:
    """Async database manager with a single engine and session factory."""

    def __init__(self, database_url: str) -> None:
        self._database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
        # SQLite admits a single writer per database file.
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize the async engine and sessionmaker if not already initialized."""
        if self._engine is not None:
            return

        LOGGER.info("Initializing async database engine")
        self._engine = create_async_engine(self._database_url, echo=False)

        if self._database_url.startswith("sqlite+aiosqlite"):

            @event.listens_for(self._engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:  # pragma: no cover
                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                except Exception:  # noqa: BLE001
                    LOGGER.debug("SQLite WAL journal_mode not applied")
                finally:
                    cursor.close()

        self._sessionmaker = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    async def create_schema(self) -> None:
        """Create catalog tables that do not exist yet."""
        if self._engine is None:
            raise RuntimeError("DatabaseManager is not initialized. Call init() first.")
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Dispose of the engine and clear the sessionmaker."""
        if self._engine is not None:
            LOGGER.info("Disposing async database engine")
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield an AsyncSession; commit on success and roll back on errors."""
        if self._sessionmaker is None:
            raise RuntimeError("DatabaseManager is not initialized. Call init() first.")

        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def write_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session whose transaction holds the process-wide write lock."""
        async with self._write_lock:
            async with self.session() as session:
                yield session

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine


def _insert_for(session: AsyncSession, model: type[Base]):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"Upsert is not supported for dialect {dialect!r}")


async def upsert_projects(
    session: AsyncSession,
    records: list[ProjectRecord],
    now: datetime,
) -> int:
    """Insert-or-update projects keyed on identifier inside the caller's transaction."""
    written = 0
    for record in records:
        values = record.row()
        stmt = _insert_for(session, Project).values(id=_new_id(), created_at=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Project.identifier],
            set_={**{name: stmt.excluded[name] for name in PROJECT_MUTABLE_FIELDS}, "updated_at": now},
        )
        await session.execute(stmt)
        written += 1
    return written


async def upsert_cache_entries(
    session: AsyncSession,
    entry_type: str,
    hashes: dict[str, str],
    now: datetime,
) -> None:
    """Insert-or-update cache rows keyed on (type, name)."""
    for name, value in hashes.items():
        stmt = _insert_for(session, CacheEntry).values(
            id=_new_id(), type=entry_type, name=name, hash=value, created_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheEntry.type, CacheEntry.name],
            set_={"hash": stmt.excluded.hash, "updated_at": now},
        )
        await session.execute(stmt)


async def load_cache_entries(session: AsyncSession) -> list[CacheEntry]:
    result = await session.execute(select(CacheEntry))
    return list(result.scalars().all())


async def query_projects(
    session: AsyncSession,
    search: str,
    season: int,
) -> list[Project]:
    """Filter projects by case-insensitive link/creator substring and exact season."""
    pattern = f"%{search.lower()}%"
    stmt = (
        select(Project)
        .where(
            or_(Project.link_lower.like(pattern), Project.creator_lower.like(pattern)),
            Project.season == season,
        )
        .order_by(Project.date, Project.order)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_all_projects(session: AsyncSession) -> list[Project]:
    stmt = select(Project).order_by(Project.season, Project.date, Project.order)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_projects(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Project))
    return int(result.scalar_one())


async def get_project(session: AsyncSession, identifier: str) -> Project | None:
    result = await session.execute(select(Project).where(Project.identifier == identifier))
    return result.scalar_one_or_none()
