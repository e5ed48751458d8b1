"""Scrape runner: reconcile branch READMEs into the project catalog."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from showcase.core.cache import ChangeDetectionCache
from showcase.core.config import Settings, get_settings
from showcase.core.db import DatabaseManager, ProjectRecord, upsert_projects, utc_now
from showcase.core.errors import FetchError, ParseError, PersistenceError
from showcase.core.hashing import build_project_identifier, compute_content_hash
from showcase.core.logging import setup_logging
from showcase.core.models import CACHE_TYPE_BRANCH, CACHE_TYPE_PROJECT
from showcase.fetchers.github_readme import GitHubReadmeSource, get_season_number
from showcase.fetchers.markdown_extractor import (
    INDONESIAN_MONTHS,
    MarkdownRenderer,
    RawWeek,
    parse_markdown_content,
    render_markdown,
)
from showcase.fetchers.screenshots import ScreenshotCapturer

LOGGER = logging.getLogger(__name__)


class BranchSource(Protocol):
    async def fetch_branches(self) -> list[str]: ...

    async def fetch_readme(self, branch: str) -> str | None: ...

    async def aclose(self) -> None: ...


class Capturer(Protocol):
    async def capture(self, url: str, identifier: str) -> str | None: ...

    async def aclose(self) -> None: ...


@dataclass
class ScrapeSummary:
    branches_total: int = 0
    branches_processed: int = 0
    branches_unchanged: int = 0
    branches_skipped: int = 0
    branches_failed: int = 0
    projects_written: int = 0
    projects_unchanged: int = 0
    screenshots_captured: int = 0
    screenshots_failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ScrapeRunner:
    """Single-flight reconciler; one instance per process."""

    def __init__(
        self,
        database: DatabaseManager,
        source: BranchSource,
        capturer: Capturer,
        limiter: asyncio.Semaphore,
        cache: ChangeDetectionCache | None = None,
        months: tuple[str, ...] = INDONESIAN_MONTHS,
        render: MarkdownRenderer = render_markdown,
    ) -> None:
        self.database = database
        self.source = source
        self.capturer = capturer
        self.limiter = limiter
        self.cache = cache or ChangeDetectionCache(database)
        self.months = months
        self.render = render
        self.is_scraping = False
        self.last_summary: ScrapeSummary | None = None
        self._task: asyncio.Task | None = None

    def trigger(self) -> bool:
        """Start a run in the background; False when one is already in flight."""
        loop = asyncio.get_running_loop()
        if self.is_scraping:
            LOGGER.info("Scraping in progress.")
            return False
        self.is_scraping = True
        self._task = loop.create_task(self._run_claimed())
        self._task.add_done_callback(_log_task_failure)
        return True

    async def scrape_project(self) -> ScrapeSummary | None:
        """Run one reconciliation inline; None when one is already in flight."""
        if self.is_scraping:
            LOGGER.info("Scraping in progress.")
            return None
        self.is_scraping = True
        return await self._run_claimed()

    async def wait_idle(self) -> None:
        if self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

    async def _run_claimed(self) -> ScrapeSummary:
        try:
            summary = await self._run()
            self.last_summary = summary
            return summary
        finally:
            self.is_scraping = False

    async def _run(self) -> ScrapeSummary:
        summary = ScrapeSummary()
        try:
            await self.cache.load()
            branches = await self.source.fetch_branches()
            summary.branches_total = len(branches)
            await asyncio.gather(*(self._process_branch(branch, summary) for branch in branches))
            LOGGER.info("Scraping completed: %s", json.dumps(summary.to_dict()))
        except Exception as exc:  # noqa: BLE001
            summary.errors.append({"branch": "*", "error": str(exc)})
            LOGGER.exception("Scraping failed: %s", exc)
        finally:
            await self._close_collaborators()
        return summary

    async def _close_collaborators(self) -> None:
        for collaborator in (self.source, self.capturer):
            try:
                await collaborator.aclose()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Failed closing %s: %s", type(collaborator).__name__, exc)

    async def _process_branch(self, branch: str, summary: ScrapeSummary) -> None:
        try:
            await self._reconcile_branch(branch, summary)
        except (FetchError, ParseError, PersistenceError) as exc:
            summary.branches_failed += 1
            summary.errors.append({"branch": branch, "error": str(exc)})
            LOGGER.error("Branch %s failed: %s", branch, exc)
        except Exception as exc:  # noqa: BLE001
            summary.branches_failed += 1
            summary.errors.append({"branch": branch, "error": str(exc)})
            LOGGER.exception("Unexpected failure on branch %s", branch)

    async def _reconcile_branch(self, branch: str, summary: ScrapeSummary) -> None:
        content = await self.source.fetch_readme(branch)
        if content is None:
            LOGGER.warning("No content for branch: %s", branch)
            summary.branches_skipped += 1
            return

        content_hash = compute_content_hash(content)
        if self.cache.is_unchanged(CACHE_TYPE_BRANCH, branch, content_hash):
            LOGGER.info("Cache hit for branch: %s", branch)
            summary.branches_unchanged += 1
            return

        LOGGER.info("Processing branch: %s", branch)
        season = get_season_number(branch)
        weeks = parse_markdown_content(content, months=self.months, render=self.render)

        pending: list[ProjectRecord] = []
        for week in weeks:
            pending.extend(await self._prepare_week(week, branch, season, summary))

        if pending:
            await self._persist(branch, pending)
            summary.projects_written += len(pending)

        # Rows are committed; only now mark their hashes as seen.
        await self._update_cache(CACHE_TYPE_PROJECT, {r.identifier: r.block_hash for r in pending})
        await self._update_cache(CACHE_TYPE_BRANCH, {branch: content_hash})
        summary.branches_processed += 1

    async def _prepare_week(
        self,
        week: RawWeek,
        branch: str,
        season: int,
        summary: ScrapeSummary,
    ) -> list[ProjectRecord]:
        changed = []
        seen: set[str] = set()
        for project in week.projects:
            identifier = build_project_identifier(branch, project.order, week.date)
            if identifier in seen:
                # First entry wins.
                LOGGER.warning(
                    "Duplicate entry %d in week %s of branch %s; keeping the first (%s), ignoring %s",
                    project.order,
                    week.date.isoformat(),
                    branch,
                    identifier,
                    project.link,
                )
                continue
            seen.add(identifier)
            block_hash = compute_content_hash(project.block)
            if self.cache.is_unchanged(CACHE_TYPE_PROJECT, identifier, block_hash):
                summary.projects_unchanged += 1
                continue
            changed.append((project, identifier, block_hash))

        screenshots = await asyncio.gather(
            *(self.capturer.capture(project.link, identifier) for project, identifier, _ in changed),
            return_exceptions=True,
        )

        records: list[ProjectRecord] = []
        for (project, identifier, block_hash), screenshot in zip(changed, screenshots):
            if isinstance(screenshot, BaseException):
                LOGGER.warning("Screenshot failed for %s: %s", identifier, screenshot)
                screenshot = None
            if screenshot is None:
                summary.screenshots_failed += 1
            else:
                summary.screenshots_captured += 1
            records.append(
                ProjectRecord(
                    identifier=identifier,
                    branch=branch,
                    season=season,
                    date=week.date.isoformat(),
                    order=project.order,
                    link=project.link,
                    creator=project.creator,
                    description=project.description,
                    screenshot=screenshot,
                    block_hash=block_hash,
                )
            )
        return records

    async def _persist(self, branch: str, records: list[ProjectRecord]) -> None:
        # Limiter slot first, then the write lock; never the reverse.
        async with self.limiter:
            LOGGER.info("Inserting %d projects for branch %s...", len(records), branch)
            await self._write_projects(branch, records)

    async def _write_projects(self, branch: str, records: list[ProjectRecord]) -> None:
        try:
            async with self.database.write_session() as session:
                await upsert_projects(session, records, utc_now())
        except SQLAlchemyError as exc:
            LOGGER.error("Rolled back %d project writes for branch %s", len(records), branch)
            raise PersistenceError(f"Failed to upsert projects for branch {branch}: {exc}") from exc

    async def _update_cache(self, entry_type: str, hashes: dict[str, str]) -> None:
        try:
            await self.cache.put_many(entry_type, hashes)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update {entry_type} cache: {exc}") from exc


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        LOGGER.warning("Background scrape was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("Background scrape crashed: %s", exc, exc_info=exc)


def build_runner(settings: Settings, database: DatabaseManager) -> ScrapeRunner:
    """Wire the GitHub source and Playwright capturer around one shared limiter."""
    limiter = asyncio.Semaphore(settings.concurrency_limit)
    return ScrapeRunner(
        database=database,
        source=GitHubReadmeSource(settings),
        capturer=ScreenshotCapturer(settings, limiter),
        limiter=limiter,
    )


async def run_once(settings: Settings, init_db: bool = False) -> ScrapeSummary | None:
    database = DatabaseManager(settings.database_url)
    await database.init()
    try:
        if init_db:
            await database.create_schema()
        return await build_runner(settings, database).scrape_project()
    finally:
        await database.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Showcase README scrape runner")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create catalog tables before scraping",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (defaults to LOG_LEVEL).",
    )
    args = parser.parse_args()

    settings = get_settings()
    if args.log_level:
        settings.log_level = args.log_level
    setup_logging(settings)

    summary = asyncio.run(run_once(settings, init_db=args.init_db))
    if summary is None:
        print(json.dumps({"summary": None}))
        return 0
    print(json.dumps({"summary": summary.to_dict()}, ensure_ascii=False))
    return 0 if summary.branches_failed == 0 and not summary.errors else 1


if __name__ == "__main__":
    raise SystemExit(main())
