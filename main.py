from contextlib import asynccontextmanager
from typing import List, Dict, Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from dotenv import load_dotenv

from app.config import settings
from app.formatters.itinerary import format_search_result
from app.junction.client import JunctionClient
from app.multimodal.orchestrator import InvalidDepartureDateError, SearchOrchestrator
from app.obs.logger import log_event
from app.obs.metrics import get_metrics_snapshot
from app.obs.middleware import ObservabilityMiddleware
from app.types import MultimodalSearchRequest, MultimodalSearchResult

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log_event("startup", app_env=settings.APP_ENV, upstream=settings.JUNCTION_BASE_URL)
    junction = JunctionClient()
    app.state.junction = junction
    app.state.orchestrator = SearchOrchestrator(junction)
    if not settings.JUNCTION_API_KEY:
        log_event("startup_warning", level="WARNING", detail="JUNCTION_API_KEY is not set")

    yield

    # Shutdown
    await junction.aclose()
    log_event("shutdown")


api = FastAPI(title="Multimodal Trip Search", lifespan=lifespan)


@api.get("/health")
async def health():
    return {"status": "ok"}


@api.get("/metrics")
async def metrics():
    return get_metrics_snapshot()


@api.get("/places")
async def places(request: Request, q: str = Query(..., min_length=2)) -> List[Dict[str, Any]]:
    """Station and airport suggestions for the search form"""
    return await request.app.state.junction.search_places(q)


async def _run_search(request: Request, body: MultimodalSearchRequest) -> MultimodalSearchResult:
    try:
        return await request.app.state.orchestrator.search(body)
    except InvalidDepartureDateError as e:
        raise HTTPException(status_code=422, detail=str(e))


@api.post("/multimodal/search", response_model=MultimodalSearchResult)
async def multimodal_search(request: Request, body: MultimodalSearchRequest):
    """Search trains and flights and combine them into ranked itineraries.

    An empty itinerary list is a successful search; per-mode upstream
    failures are reported in trainError / flightError.
    """
    return await _run_search(request, body)


@api.post("/multimodal/search/text", response_class=PlainTextResponse)
async def multimodal_search_text(request: Request, body: MultimodalSearchRequest,
                                 limit: int = Query(5, ge=1, le=50)):
    """Same search, rendered as a plain-text reply"""
    result = await _run_search(request, body)
    return format_search_result(result, limit=limit)


# Apply middleware
app = ObservabilityMiddleware(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.APP_ENV == "dev",
        log_level="info"
    )
