from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    runner = getattr(request.app.state, "runner", None)
    return {"status": "ok", "scraping": bool(runner and runner.is_scraping)}
