"""Read-side shaping of catalog rows for the query and metadata endpoints."""

from __future__ import annotations

from typing import Any


def group_projects_by_week(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Group season rows into `{season, weeks: [{date, projects}], count}`; {} when empty."""
    if not rows:
        return {}
    weeks: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        weeks.setdefault(row["date"], []).append(row)
    return {
        "season": rows[0]["season"],
        "weeks": [{"date": day, "projects": weeks[day]} for day in sorted(weeks)],
        "count": len(rows),
    }


def build_metadata(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate counts, distinct creators/links, per-season counts and the date span."""
    creators: dict[str, None] = {}
    links: dict[str, None] = {}
    season_counts: dict[int, int] = {}
    earliest: str | None = None
    latest: str | None = None

    for row in rows:
        creators[(row.get("creator") or "").strip().lower()] = None
        links[(row.get("link") or "").strip().lower()] = None
        season = row["season"]
        season_counts[season] = season_counts.get(season, 0) + 1
        day = row["date"]
        if earliest is None or day < earliest:
            earliest = day
        if latest is None or day > latest:
            latest = day

    return {
        "totalProjects": len(rows),
        "totalSeasons": len(season_counts),
        "creators": [name for name in creators if name],
        "links": [link for link in links if link],
        "seasonStats": [{"season": season, "count": count} for season, count in season_counts.items()],
        "earliestDate": earliest,
        "latestDate": latest,
    }
