from typing import Any

from fastapi import APIRouter, Depends

from showcase.api.dependencies import get_app_settings, get_database
from showcase.core.catalog import build_metadata, group_projects_by_week
from showcase.core.config import Settings
from showcase.core.db import DatabaseManager, list_all_projects, query_projects

router = APIRouter(tags=["projects"])


def _parse_season(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


@router.get("/projects")
async def get_projects(
    search: str = "",
    season: str | None = None,
    raw: str | None = None,
    settings: Settings = Depends(get_app_settings),
    database: DatabaseManager = Depends(get_database),
) -> dict[str, Any]:
    async with database.session() as session:
        rows = [
            project.to_dict()
            for project in await query_projects(
                session, search=search, season=_parse_season(season, settings.default_season)
            )
        ]

    data: Any = rows if raw == "true" else group_projects_by_week(rows)
    return {"message": "Success", "status": True, "data": data}


@router.get("/metadata")
async def get_metadata(database: DatabaseManager = Depends(get_database)) -> dict[str, Any]:
    async with database.session() as session:
        rows = [project.to_dict() for project in await list_all_projects(session)]
    return {"message": "Success", "status": True, "data": build_metadata(rows)}
