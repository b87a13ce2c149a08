"""
REST API module for the UV Feed application.

Provides endpoints for:
- The in-app location list kept fresh by the foreground refresher
- The widget timeline read straight from the reading store
- Ingestion health monitoring and manual refresh
"""

import logging
import os
from typing import List, Optional
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .database import Database, StoreError
from .fetcher import DEFAULT_TIMEOUT, UV_FEED_URL, Reading, UVFeedFetcher
from .ingestion import IngestionService, IngestResult
from .presentation import category_for, format_index, legend
from .scheduler import FOREGROUND_REFRESH_SECONDS, ForegroundRefresher
from .store import ReadingStore
from .widget import WidgetFamily, WidgetLocation, WidgetTimelineProvider

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================

class LocationReading(BaseModel):
    id: str
    location_name: str
    index: float
    display_index: str
    full_time: str
    category: str
    label: str
    color: str


class LocationList(BaseModel):
    locations: List[LocationReading]
    last_update_time: str
    last_updated: str
    is_loading: bool
    error_message: Optional[str]


class WidgetLocationModel(BaseModel):
    location_name: str
    index: float
    display_index: str
    full_time: str
    label: str
    color: str


class WidgetTimelineModel(BaseModel):
    family: str
    date: str
    refresh_after: str
    locations: List[WidgetLocationModel]


class FetchResultModel(BaseModel):
    success: bool
    stage: Optional[str]
    error_message: Optional[str]
    entries_count: int
    fetch_time: str
    fetched_at: Optional[str]
    response_time_ms: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: str
    scheduler: str
    risks: List[str]


class SystemStatus(BaseModel):
    status: str
    uptime: str
    scheduler_running: bool
    feed_url: str
    stored_locations: int
    last_update: Optional[str]
    runs: int
    successes: int
    failures: int
    reliability_percent: float
    last_result: Optional[FetchResultModel]
    risks: List[str]


# =============================================================================
# Global State
# =============================================================================

db: Optional[Database] = None
store: Optional[ReadingStore] = None
fetcher: Optional[UVFeedFetcher] = None
ingestion: Optional[IngestionService] = None
refresher: Optional[ForegroundRefresher] = None
widget: Optional[WidgetTimelineProvider] = None
start_time: Optional[datetime] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global db, store, fetcher, ingestion, refresher, widget, start_time

    logger.info("Starting UV Feed application...")
    start_time = datetime.now(timezone.utc)

    db = Database(db_path=os.getenv("UV_DB_PATH"))
    store = ReadingStore(db)
    fetcher = UVFeedFetcher(
        url=os.getenv("UV_FEED_URL", UV_FEED_URL),
        timeout=float(os.getenv("UV_FETCH_TIMEOUT", str(DEFAULT_TIMEOUT)))
    )
    ingestion = IngestionService(fetcher=fetcher, store=store)
    refresher = ForegroundRefresher(
        ingestion,
        interval_seconds=float(os.getenv("UV_REFRESH_SECONDS", str(FOREGROUND_REFRESH_SECONDS)))
    )
    widget = WidgetTimelineProvider(store)

    if os.getenv("UV_AUTO_REFRESH", "true").lower() == "true":
        refresher.start()
    else:
        logger.info("Automatic refresh disabled")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if refresher:
        refresher.stop()
    if fetcher:
        fetcher.close()
    if db:
        db.close()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="UV Index API",
    description="UV index readings from the ARPANSA feed",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Utility Functions
# =============================================================================

def detect_risks() -> List[str]:
    """Detect system risks."""
    if not db or not refresher or not ingestion:
        return ["System not initialized"]

    risks = []
    last = ingestion.last_result
    if last and not last.success:
        risks.append(f"Last ingestion failed at {last.error.stage.value} stage")

    stats = ingestion.get_stats()
    if stats["runs"] >= 5 and stats["reliability_percent"] < 80:
        risks.append("Low ingestion reliability")

    if not refresher.is_running:
        risks.append("Refresher not running")

    return risks


def get_uptime() -> str:
    """Get formatted uptime string."""
    if not start_time:
        return "N/A"
    delta = datetime.now(timezone.utc) - start_time
    hours, remainder = divmod(int(delta.total_seconds()), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"


def to_location_model(reading: Reading) -> LocationReading:
    category = category_for(reading.index)
    return LocationReading(
        id=reading.id,
        location_name=reading.location_name,
        index=reading.index,
        display_index=format_index(reading.index),
        full_time=reading.full_time,
        category=category.name,
        label=category.label,
        color=category.color
    )


def to_widget_model(location: WidgetLocation) -> WidgetLocationModel:
    return WidgetLocationModel(
        location_name=location.location_name,
        index=location.index,
        display_index=location.display_index,
        full_time=location.full_time,
        label=location.category.label,
        color=location.category.color
    )


def to_result_model(result: IngestResult) -> FetchResultModel:
    return FetchResultModel(
        success=result.success,
        stage=result.error.stage.value if result.error else None,
        error_message=str(result.error.cause) if result.error else None,
        entries_count=result.entries_count,
        fetch_time=result.started_at.isoformat(),
        fetched_at=result.snapshot.fetched_at.isoformat() if result.snapshot is not None else None,
        response_time_ms=result.duration_ms
    )


# =============================================================================
# API Endpoints - Info
# =============================================================================

@app.get("/", tags=["Info"])
async def root():
    """API information."""
    return {
        "name": "UV Index API",
        "version": "1.0.0",
        "description": "UV index readings for Australian locations",
        "source": os.getenv("UV_FEED_URL", UV_FEED_URL)
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    risks = detect_risks()

    return HealthResponse(
        status="healthy" if not risks else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database="connected" if db else "disconnected",
        scheduler="running" if refresher and refresher.is_running else "stopped",
        risks=risks
    )


@app.get("/legend", tags=["Info"])
async def get_legend():
    """UV index color legend."""
    return {"categories": legend()}


# =============================================================================
# API Endpoints - Readings
# =============================================================================

@app.get("/readings", response_model=LocationList, tags=["Readings"])
async def get_readings():
    """Location list as currently shown in the app."""
    if not refresher:
        raise HTTPException(status_code=503, detail="Refresher not available")

    state = refresher.state()
    return LocationList(
        locations=[to_location_model(r) for r in state.locations],
        last_update_time=state.last_update_time.isoformat(),
        last_updated=refresher.relative_time_string(),
        is_loading=state.is_loading,
        error_message=state.error_message
    )


@app.get("/readings/latest", response_model=List[LocationReading], tags=["Readings"])
async def get_latest_readings(limit: Optional[int] = Query(default=None, ge=1, le=500)):
    """Readings currently in the store."""
    if not store:
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        readings = store.read_latest(limit)
    except StoreError as e:
        logger.error(f"Read error: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return [to_location_model(r) for r in readings]


# =============================================================================
# API Endpoints - Widget
# =============================================================================

@app.get("/widget/timeline", response_model=WidgetTimelineModel, tags=["Widget"])
async def get_widget_timeline(family: WidgetFamily = Query(default=WidgetFamily.SMALL)):
    """Widget timeline entry and next refresh instant."""
    if not widget:
        raise HTTPException(status_code=503, detail="Widget provider not available")

    timeline = widget.get_timeline()
    entry = timeline.entries[0]
    return WidgetTimelineModel(
        family=family.value,
        date=entry.date.isoformat(),
        refresh_after=timeline.refresh_after.isoformat(),
        locations=[to_widget_model(loc) for loc in entry.locations_for(family)]
    )


# =============================================================================
# API Endpoints - Status & Admin
# =============================================================================

@app.get("/status", response_model=SystemStatus, tags=["Status"])
async def get_system_status():
    """Get comprehensive system status."""
    if not db or not store or not ingestion or not refresher:
        raise HTTPException(status_code=503, detail="Service not initialized")

    try:
        stored = db.count_documents("readings")
        last_update = store.last_update()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    stats = ingestion.get_stats()
    last = ingestion.last_result
    risks = detect_risks()

    if not risks:
        status = "healthy"
    elif len(risks) <= 1:
        status = "degraded"
    else:
        status = "unhealthy"

    return SystemStatus(
        status=status,
        uptime=get_uptime(),
        scheduler_running=refresher.is_running,
        feed_url=ingestion.fetcher.url,
        stored_locations=stored,
        last_update=last_update.isoformat() if last_update else None,
        runs=stats["runs"],
        successes=stats["successes"],
        failures=stats["failures"],
        reliability_percent=stats["reliability_percent"],
        last_result=to_result_model(last) if last else None,
        risks=risks
    )


@app.post("/fetch", response_model=FetchResultModel, tags=["Admin"])
def trigger_fetch():
    """Manually trigger a refresh of the feed."""
    if not refresher:
        raise HTTPException(status_code=503, detail="Refresher not available")

    result = refresher.refresh_now()
    if result is None:
        raise HTTPException(status_code=409, detail="Refresh already in progress")
    return to_result_model(result)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "uvfeed.api:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "false").lower() == "true"
    )
