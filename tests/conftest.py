from __future__ import annotations

from pathlib import Path

import pytest

from showcase.core.config import Settings
from showcase.core.db import DatabaseManager


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}",
        screenshot_dir=str(tmp_path / "screenshots"),
        scrape_api_keys=["key-a", "key-b"],
        capture_delay_seconds=0,
        github_rate_limit=1000.0,
    )


@pytest.fixture
async def database(settings: Settings):
    manager = DatabaseManager(settings.database_url)
    await manager.init()
    await manager.create_schema()
    yield manager
    await manager.dispose()
