import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from showcase.api.dependencies import get_app_settings, get_runner
from showcase.core.config import Settings
from showcase.workers.scrape_runner import ScrapeRunner

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["scrape"])


class ScrapeResponse(BaseModel):
    message: str
    status: bool = True
    started: bool


@router.api_route("/scrape", methods=["GET", "POST"], response_model=ScrapeResponse)
async def trigger_scrape(
    x_scraper_api_key: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
    runner: ScrapeRunner = Depends(get_runner),
) -> ScrapeResponse:
    if not x_scraper_api_key or x_scraper_api_key not in settings.scrape_api_keys:
        raise HTTPException(status_code=401, detail="Unauthorized")

    # Fire-and-forget: run errors only show up in the logs.
    if runner.trigger():
        return ScrapeResponse(message="Scraping started", started=True)
    return ScrapeResponse(message="Scraping already in progress", started=False)
