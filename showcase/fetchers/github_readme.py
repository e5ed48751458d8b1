"""GitHub branch listing and README fetcher for the showcase repository."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from typing import Any

import httpx

from showcase.core.config import Settings
from showcase.core.errors import FetchError

LOGGER = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
README_PATH = "README.md"
PRIMARY_BRANCH = "main"
PRIMARY_SEASON = 1
SEASON_BRANCH_RE = re.compile(r"^season-(\d+)$")
BRANCHES_PER_PAGE = 100


class AsyncRateLimiter:
    """Token-interval rate limiter for async request pacing."""

    def __init__(self, rate_per_second: float) -> None:
        self.rate = max(rate_per_second, 0.001)
        self.interval = 1.0 / self.rate
        self._next_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            wait_for = self._next_time - now
            if wait_for > 0:
                await asyncio.sleep(wait_for)
                now = loop.time()
            self._next_time = now + self.interval


def is_tracked_branch(name: str) -> bool:
    """Only the primary branch and `season-<N>` branches carry showcase READMEs."""
    return name == PRIMARY_BRANCH or SEASON_BRANCH_RE.match(name) is not None


def get_season_number(branch: str) -> int:
    """Season for a tracked branch: primary is season 1, `season-N` is N."""
    if branch == PRIMARY_BRANCH:
        return PRIMARY_SEASON
    match = SEASON_BRANCH_RE.match(branch)
    if not match:
        raise ValueError(f"Not a season branch: {branch!r}")
    return int(match.group(1))


def sort_branches(names: list[str]) -> list[str]:
    """Filter to tracked branches; primary first, then ascending season number."""
    tracked = [name for name in names if is_tracked_branch(name)]
    return sorted(tracked, key=lambda name: (name != PRIMARY_BRANCH, get_season_number(name)))


def decode_contents_payload(payload: dict[str, Any]) -> str | None:
    """Decode a contents API payload into text; None when it is not a file."""
    if payload.get("type") != "file":
        return None
    encoded = payload.get("content")
    if payload.get("encoding") != "base64" or not isinstance(encoded, str):
        raise FetchError(f"Unsupported README encoding: {payload.get('encoding')!r}")
    try:
        raw = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise FetchError(f"Failed decoding README content: {exc}") from exc
    return raw.decode("utf-8", errors="replace")


class GitHubReadmeSource:
    """Lists tracked branches and fetches their README through the GitHub REST API."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        attempts: int = 4,
    ) -> None:
        self.owner = settings.github_repo_owner
        self.repo = settings.github_repo_name
        self.token = settings.github_token
        self.timeout_seconds = settings.github_timeout_seconds
        self.attempts = max(1, attempts)
        self._limiter = AsyncRateLimiter(settings.github_rate_limit)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "showcase-scraper (+https://github.com/sandhikagalih/project-kalian)",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GITHUB_API_BASE,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _api_get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        client = self._get_client()
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                await self._limiter.acquire()
                response = await client.get(path, params=params)
            except httpx.HTTPError as exc:
                last_error = exc
            else:
                if response.status_code == 404:
                    if allow_missing:
                        return None
                    raise FetchError(f"GitHub API not found: {path}")
                if response.status_code < 400:
                    return response.json()
                last_error = FetchError(
                    f"GitHub API HTTP {response.status_code} for {path}: {response.text[:200]}"
                )
                if response.status_code < 500 and response.status_code not in {403, 429}:
                    break
            if attempt < self.attempts:
                await asyncio.sleep(min(10.0, 0.8 * (2 ** (attempt - 1))))
        raise FetchError(f"Failed API request {path}: {last_error}") from last_error

    async def list_branch_names(self) -> list[str]:
        names: list[str] = []
        page = 1
        while True:
            payload = await self._api_get_json(
                f"/repos/{self.owner}/{self.repo}/branches",
                params={"per_page": BRANCHES_PER_PAGE, "page": page},
            )
            if not isinstance(payload, list):
                raise FetchError(f"Invalid branches payload for {self.owner}/{self.repo}")
            names.extend(str(item.get("name")) for item in payload if isinstance(item, dict))
            if len(payload) < BRANCHES_PER_PAGE:
                return names
            page += 1

    async def fetch_branches(self) -> list[str]:
        """Return tracked branch names, primary first then by season."""
        return sort_branches(await self.list_branch_names())

    async def fetch_readme(self, branch: str) -> str | None:
        """Return the branch README text, or None when the branch has no README."""
        payload = await self._api_get_json(
            f"/repos/{self.owner}/{self.repo}/contents/{README_PATH}",
            params={"ref": branch},
            allow_missing=True,
        )
        if payload is None or not isinstance(payload, dict):
            return None
        return decode_contents_payload(payload)
