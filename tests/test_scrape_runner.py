from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from showcase.core.cache import ChangeDetectionCache
from showcase.core.db import DatabaseManager, count_projects, get_project, list_all_projects
from showcase.core.errors import FetchError
from showcase.core.hashing import compute_content_hash
from showcase.core.models import CACHE_TYPE_BRANCH, CACHE_TYPE_PROJECT
from showcase.workers import scrape_runner
from showcase.workers.scrape_runner import ScrapeRunner
from tests.fakes import README_MAIN, README_SEASON_2, FakeCapturer, FakeSource

MAIN_IDS = ["main_2024_01_05_1", "main_2024_01_05_2", "main_2024_01_19_1"]
SEASON_2_IDS = ["season_2_2024_02_02_1"]


def _runner(
    database: DatabaseManager,
    readmes: dict[str, str | None],
    capturer: FakeCapturer | None = None,
) -> tuple[ScrapeRunner, FakeSource, FakeCapturer]:
    source = FakeSource(readmes)
    capturer = capturer or FakeCapturer()
    runner = ScrapeRunner(database, source, capturer, asyncio.Semaphore(5))
    return runner, source, capturer


async def _wait_for(predicate, attempts: int = 500) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


async def _cached(database: DatabaseManager) -> ChangeDetectionCache:
    cache = ChangeDetectionCache(database)
    await cache.load()
    return cache


async def test_first_run_writes_every_project(database: DatabaseManager) -> None:
    runner, source, capturer = _runner(database, {"main": README_MAIN, "season-2": README_SEASON_2})

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_total == 2
    assert summary.branches_processed == 2
    assert summary.projects_written == 4
    assert summary.screenshots_captured == 4
    assert summary.errors == []
    assert sorted(capturer.calls) == sorted(MAIN_IDS + SEASON_2_IDS)
    assert source.closed == 1

    async with database.session() as session:
        rows = {row.identifier: row for row in await list_all_projects(session)}
    assert sorted(rows) == sorted(MAIN_IDS + SEASON_2_IDS)
    bob = rows["main_2024_01_05_2"]
    assert (bob.season, bob.date, bob.order) == (1, "2024-01-05", 2)
    assert bob.creator == "Bob"
    assert bob.link_lower == "https://b.example"
    assert bob.screenshot == "screenshots/main_2024_01_05_2.jpeg"
    assert rows["main_2024_01_19_1"].creator is None
    assert rows["season_2_2024_02_02_1"].season == 2
    assert all(row.updated_at is None for row in rows.values())

    cache = await _cached(database)
    assert cache.get(CACHE_TYPE_BRANCH, "main") == compute_content_hash(README_MAIN)
    assert cache.get(CACHE_TYPE_BRANCH, "season-2") == compute_content_hash(README_SEASON_2)
    assert all(cache.get(CACHE_TYPE_PROJECT, identifier) for identifier in MAIN_IDS + SEASON_2_IDS)


async def test_second_run_over_unchanged_content_is_a_no_op(database: DatabaseManager) -> None:
    runner, _, capturer = _runner(database, {"main": README_MAIN, "season-2": README_SEASON_2})
    await runner.scrape_project()
    calls_after_first = list(capturer.calls)

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_unchanged == 2
    assert summary.branches_processed == 0
    assert summary.projects_written == 0
    assert capturer.calls == calls_after_first
    async with database.session() as session:
        rows = await list_all_projects(session)
    assert len(rows) == 4
    assert all(row.updated_at is None for row in rows)


async def test_only_the_edited_project_is_recaptured_and_rewritten(database: DatabaseManager) -> None:
    runner, source, capturer = _runner(database, {"main": README_MAIN})
    await runner.scrape_project()
    before = await _cached(database)
    capturer.calls.clear()

    source.readmes["main"] = README_MAIN.replace("Portfolio.\n", "Portfolio, now with a blog.\n")
    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_processed == 1
    assert summary.projects_written == 1
    assert summary.projects_unchanged == 2
    assert capturer.calls == ["main_2024_01_05_2"]

    async with database.session() as session:
        bob = await get_project(session, "main_2024_01_05_2")
        alice = await get_project(session, "main_2024_01_05_1")
        anonymous = await get_project(session, "main_2024_01_19_1")
    assert bob is not None and "now with a blog" in bob.description
    assert bob.updated_at is not None
    assert alice is not None and alice.updated_at is None
    assert anonymous is not None and anonymous.updated_at is None

    after = await _cached(database)
    for identifier in ("main_2024_01_05_1", "main_2024_01_19_1"):
        assert after.get(CACHE_TYPE_PROJECT, identifier) == before.get(CACHE_TYPE_PROJECT, identifier)
    assert after.get(CACHE_TYPE_PROJECT, "main_2024_01_05_2") != before.get(
        CACHE_TYPE_PROJECT, "main_2024_01_05_2"
    )
    assert after.get(CACHE_TYPE_BRANCH, "main") == compute_content_hash(source.readmes["main"])


async def test_overlapping_triggers_run_once(database: DatabaseManager) -> None:
    gate = asyncio.Event()
    runner, source, capturer = _runner(
        database, {"main": README_MAIN, "season-2": README_SEASON_2}, FakeCapturer(gate=gate)
    )

    assert runner.trigger() is True
    assert runner.is_scraping is True
    await _wait_for(lambda: bool(capturer.calls))

    assert runner.trigger() is False
    assert await runner.scrape_project() is None

    gate.set()
    await runner.wait_idle()

    assert runner.is_scraping is False
    assert source.branch_fetches == 1
    assert runner.last_summary is not None
    assert runner.last_summary.projects_written == 4


async def test_failing_branches_do_not_stop_siblings(database: DatabaseManager) -> None:
    runner, _, _ = _runner(
        database,
        {
            "main": README_MAIN,
            "season-2": "### 5 Jnuary 2024\n1. [https://x.example]\n",
            "season-3": None,
        },
    )

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_processed == 1
    assert summary.branches_failed == 1
    assert summary.branches_skipped == 1
    assert [error["branch"] for error in summary.errors] == ["season-2"]

    async with database.session() as session:
        assert await count_projects(session) == 3
    cache = await _cached(database)
    assert cache.get(CACHE_TYPE_BRANCH, "main") is not None
    assert cache.get(CACHE_TYPE_BRANCH, "season-2") is None
    assert cache.get(CACHE_TYPE_BRANCH, "season-3") is None


async def test_failed_branch_write_rolls_back_and_leaves_cache_untouched(
    database: DatabaseManager, monkeypatch
) -> None:
    original = scrape_runner.upsert_projects

    async def flaky_upsert(session, records, now):
        written = await original(session, records, now)
        if records[0].branch == "season-2":
            raise SQLAlchemyError("disk I/O error")
        return written

    monkeypatch.setattr(scrape_runner, "upsert_projects", flaky_upsert)
    runner, _, _ = _runner(database, {"main": README_MAIN, "season-2": README_SEASON_2})

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_failed == 1
    assert summary.branches_processed == 1
    async with database.session() as session:
        assert await get_project(session, "season_2_2024_02_02_1") is None
        assert await count_projects(session) == 3
    cache = await _cached(database)
    assert cache.get(CACHE_TYPE_BRANCH, "season-2") is None
    assert cache.get(CACHE_TYPE_PROJECT, "season_2_2024_02_02_1") is None
    assert cache.get(CACHE_TYPE_BRANCH, "main") is not None


async def test_capture_failure_still_persists_project(database: DatabaseManager) -> None:
    runner, _, _ = _runner(database, {"main": README_MAIN}, FakeCapturer(failing={"main_2024_01_05_2"}))

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.screenshots_failed == 1
    assert summary.screenshots_captured == 2
    assert summary.branches_failed == 0
    async with database.session() as session:
        bob = await get_project(session, "main_2024_01_05_2")
    assert bob is not None
    assert bob.screenshot is None


async def test_capturer_exception_is_treated_as_missing_screenshot(database: DatabaseManager) -> None:
    class ExplodingCapturer(FakeCapturer):
        async def capture(self, url: str, identifier: str) -> str | None:
            if identifier == "main_2024_01_19_1":
                raise RuntimeError("browser crashed")
            return await super().capture(url, identifier)

    runner, _, _ = _runner(database, {"main": README_MAIN}, ExplodingCapturer())

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.branches_processed == 1
    assert summary.screenshots_failed == 1
    async with database.session() as session:
        anonymous = await get_project(session, "main_2024_01_19_1")
    assert anonymous is not None
    assert anonymous.screenshot is None


async def test_branch_listing_failure_ends_run_and_releases_lock(database: DatabaseManager) -> None:
    class BrokenSource(FakeSource):
        async def fetch_branches(self) -> list[str]:
            raise FetchError("GitHub unavailable")

    source = BrokenSource({})
    runner = ScrapeRunner(database, source, FakeCapturer(), asyncio.Semaphore(5))

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.errors == [{"branch": "*", "error": "GitHub unavailable"}]
    assert runner.is_scraping is False
    assert source.closed == 1


def _week_readme(count: int, host: str, heading: str = "### 5 Januari 2024") -> str:
    lines = [heading]
    for order in range(1, count + 1):
        lines += [f"{order}. [https://{host}-{order}.example]", f"**Creator {order}**", f"Entry {order}.", ""]
    return "\n".join(lines)


class SlotHoldingCapturer(FakeCapturer):
    """Holds a limiter slot per capture, the way the Playwright capturer does."""

    def __init__(self, limiter: asyncio.Semaphore, slow: set[str], hold_seconds: float) -> None:
        super().__init__()
        self.limiter = limiter
        self.slow = slow
        self.hold_seconds = hold_seconds

    async def capture(self, url: str, identifier: str) -> str | None:
        async with self.limiter:
            self.calls.append(identifier)
            await asyncio.sleep(self.hold_seconds if identifier in self.slow else 0)
        return f"screenshots/{identifier}.jpeg"


async def test_concurrent_branches_write_one_at_a_time(database: DatabaseManager, monkeypatch) -> None:
    original = scrape_runner.upsert_projects
    active = 0
    peak = 0

    async def tracked_upsert(session, records, now):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            await asyncio.sleep(0.01)
            return await original(session, records, now)
        finally:
            active -= 1

    monkeypatch.setattr(scrape_runner, "upsert_projects", tracked_upsert)
    limiter = asyncio.Semaphore(2)
    capturer = SlotHoldingCapturer(limiter, slow={"season_3_2024_03_01_1"}, hold_seconds=0.5)
    source = FakeSource(
        {
            "main": _week_readme(30, "main"),
            "season-2": _week_readme(30, "two", "### 2 Februari 2024"),
            "season-3": _week_readme(1, "three", "### 1 Maret 2024"),
        }
    )
    runner = ScrapeRunner(database, source, capturer, limiter)

    summary = await runner.scrape_project()

    assert summary is not None
    assert summary.errors == []
    assert summary.branches_processed == 3
    assert summary.projects_written == 61
    assert peak == 1
    async with database.session() as session:
        assert await count_projects(session) == 61
    cache = await _cached(database)
    assert all(cache.get(CACHE_TYPE_BRANCH, branch) for branch in ("main", "season-2", "season-3"))


async def test_project_writes_wait_for_a_limiter_slot(database: DatabaseManager) -> None:
    limiter = asyncio.Semaphore(1)
    source = FakeSource({"main": README_MAIN, "season-2": README_SEASON_2})
    capturer = FakeCapturer()
    runner = ScrapeRunner(database, source, capturer, limiter)

    await limiter.acquire()
    task = asyncio.create_task(runner.scrape_project())
    try:
        await _wait_for(lambda: len(capturer.calls) == 4)
        await asyncio.sleep(0.1)
        async with database.session() as session:
            assert await count_projects(session) == 0
        assert runner.is_scraping is True
    finally:
        limiter.release()

    summary = await task
    assert summary is not None
    assert summary.errors == []
    assert summary.projects_written == 4
    async with database.session() as session:
        assert await count_projects(session) == 4


async def test_repeated_order_in_a_week_keeps_the_first_entry(database: DatabaseManager, caplog) -> None:
    readme = (
        "### 5 Januari 2024\n"
        "1. [https://first.example]\nFirst.\n\n"
        "1. [https://second.example]\nSecond.\n\n"
        "2. [https://other.example]\nOther.\n"
    )
    runner, source, capturer = _runner(database, {"main": readme})

    with caplog.at_level(logging.WARNING, logger="showcase.workers.scrape_runner"):
        first = await runner.scrape_project()

    assert first is not None
    assert first.projects_written == 2
    assert capturer.calls == ["main_2024_01_05_1", "main_2024_01_05_2"]
    assert any("Duplicate entry 1" in record.getMessage() for record in caplog.records)

    capturer.calls.clear()
    source.readmes["main"] = readme.replace("Other.\n", "Other, revised.\n")
    second = await runner.scrape_project()

    assert second is not None
    assert second.projects_written == 1
    assert capturer.calls == ["main_2024_01_05_2"]
    async with database.session() as session:
        kept = await get_project(session, "main_2024_01_05_1")
    assert kept is not None
    assert kept.link == "https://first.example"
    assert kept.updated_at is None
