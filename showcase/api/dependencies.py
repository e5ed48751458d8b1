from fastapi import Request

from showcase.core.config import Settings
from showcase.core.db import DatabaseManager
from showcase.workers.scrape_runner import ScrapeRunner


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> DatabaseManager:
    return request.app.state.database


def get_runner(request: Request) -> ScrapeRunner:
    return request.app.state.runner
