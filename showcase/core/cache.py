"""Change-detection cache: persisted (type, name) -> content hash, mirrored in memory."""

from __future__ import annotations

import logging

from showcase.core.db import (
    DatabaseManager,
    load_cache_entries,
    upsert_cache_entries,
    utc_now,
)

LOGGER = logging.getLogger(__name__)


def cache_key(entry_type: str, name: str) -> str:
    return f"{entry_type}:{name}"


class ChangeDetectionCache:
    """In-memory snapshot of the cache table, rebuilt from storage on every run."""

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database
        self._hashes: dict[str, str] = {}

    async def load(self) -> int:
        """Replace the in-memory map with the full persisted table."""
        async with self._database.session() as session:
            rows = await load_cache_entries(session)
        self._hashes = {cache_key(row.type, row.name): row.hash for row in rows}
        LOGGER.debug("Loaded %d cache entries", len(self._hashes))
        return len(self._hashes)

    def get(self, entry_type: str, name: str) -> str | None:
        return self._hashes.get(cache_key(entry_type, name))

    def is_unchanged(self, entry_type: str, name: str, content_hash: str) -> bool:
        return self.get(entry_type, name) == content_hash

    async def put(self, entry_type: str, name: str, content_hash: str) -> None:
        await self.put_many(entry_type, {name: content_hash})

    async def put_many(self, entry_type: str, hashes: dict[str, str]) -> None:
        """Persist hashes in one write transaction, then mirror them in memory."""
        if not hashes:
            return
        async with self._database.write_session() as session:
            await upsert_cache_entries(session, entry_type, hashes, utc_now())
        for name, content_hash in hashes.items():
            self._hashes[cache_key(entry_type, name)] = content_hash

    def snapshot(self) -> dict[str, str]:
        return dict(self._hashes)

    def __len__(self) -> int:
        return len(self._hashes)
