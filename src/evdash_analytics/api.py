"""FastAPI service holding one viewer's analytics session."""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import requests
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import AnalyticsConfig
from .data import fetch_snapshot, load_snapshot, snapshot_feeds
from .logging_utils import setup_logging
from .models import (
    AnalyticsSnapshot,
    ComparisonMode,
    DateRange,
    FilterState,
    GroupKey,
    InvalidFieldError,
    MetricKind,
    SortKey,
    TimePeriod,
    to_payload,
)
from .orchestrator import AnalyticsOrchestrator
from .ranking import normalize_top_count

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Runtime configuration for the viewer service."""

    api_url: str | None
    api_token: str | None
    data_file: Path | None
    fetch_timeout: float
    auto_fetch: bool
    analytics: AnalyticsConfig
    cors_origins: list[str]
    debug: bool


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _parse_positive_int(name: str, value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s '%s'", name, value)
        return default
    if parsed <= 0:
        logger.warning("Ignoring non-positive %s '%s'", name, value)
        return default
    return parsed


def _parse_ratio(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning("Ignoring invalid comparison ratio '%s'", value)
        return default
    if parsed < 0:
        logger.warning("Ignoring negative comparison ratio '%s'", value)
        return default
    return parsed


def load_settings() -> Settings:
    """Load service configuration from environment variables."""

    api_url = os.getenv("EVDASH_API_URL") or None
    data_file_env = os.getenv("EVDASH_DATA_FILE")
    data_file = Path(data_file_env) if data_file_env else None
    if not api_url and data_file is None:
        raise RuntimeError("EVDASH_API_URL or EVDASH_DATA_FILE must be configured")

    defaults = AnalyticsConfig()
    analytics = AnalyticsConfig(
        page_size=_parse_positive_int(
            "EVDASH_PAGE_SIZE", os.getenv("EVDASH_PAGE_SIZE"), defaults.page_size
        ),
        comparison_ratio=_parse_ratio(
            os.getenv("EVDASH_COMPARISON_RATIO"), defaults.comparison_ratio
        ),
        default_top_count=_parse_positive_int(
            "EVDASH_TOP_COUNT", os.getenv("EVDASH_TOP_COUNT"), defaults.default_top_count
        ),
    )

    cors_env = os.getenv("EVDASH_CORS_ORIGINS", "*")
    cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

    return Settings(
        api_url=api_url,
        api_token=os.getenv("EVDASH_API_TOKEN") or None,
        data_file=data_file,
        fetch_timeout=float(os.getenv("EVDASH_FETCH_TIMEOUT", "30")),
        auto_fetch=_parse_bool(os.getenv("EVDASH_AUTO_FETCH"), True),
        analytics=analytics,
        cors_origins=cors_origins or ["*"],
        debug=_parse_bool(os.getenv("EVDASH_DEBUG"), False),
    )


_INITIAL_SETTINGS = load_settings()


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    settings = load_settings()
    setup_logging(settings.debug)
    logger.debug("Loaded settings: %s", settings)
    application.state.settings = settings
    if settings.cors_origins != _INITIAL_SETTINGS.cors_origins:
        logger.warning(
            "CORS origin configuration changed to %s after startup; restart required for changes to apply.",
            settings.cors_origins,
        )
    application.state.orchestrator = AnalyticsOrchestrator(settings.analytics)
    application.state.last_fetch = None
    if settings.auto_fetch:
        try:
            await _refresh(settings)
        except HTTPException:
            # Already logged; the viewer can retry through /api/refresh
            pass
    yield


app = FastAPI(title="EV Dashboard Analytics", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_INITIAL_SETTINGS.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def _load_snapshot(settings: Settings, state: FilterState) -> AnalyticsSnapshot:
    if settings.api_url:
        return fetch_snapshot(
            settings.api_url,
            state,
            token=settings.api_token,
            timeout=settings.fetch_timeout,
        )
    return load_snapshot(settings.data_file)


async def _refresh(settings: Settings) -> bool:
    """Fetch for the current filters and apply unless they changed meanwhile."""
    orchestrator: AnalyticsOrchestrator = app.state.orchestrator
    if orchestrator.validation_error:
        logger.debug("Not fetching: %s", orchestrator.validation_error)
        return False
    ticket = orchestrator.begin_fetch()
    try:
        snapshot = await asyncio.to_thread(_load_snapshot, settings, ticket.filter_state)
    except (requests.RequestException, OSError, ValueError) as exc:
        logger.exception("Snapshot fetch failed")
        raise HTTPException(
            status_code=502,
            detail="Unable to load dashboard data. Verify the dashboard API or data file.",
        ) from exc
    for feed, count in snapshot_feeds(snapshot):
        logger.debug("Feed %s: %d records", feed, count)
    applied = orchestrator.apply_snapshot(ticket, snapshot)
    if applied:
        app.state.last_fetch = datetime.now().astimezone().isoformat(timespec="seconds")
    return applied


def _require_settings() -> Settings:
    settings = getattr(app.state, "settings", None)
    if settings is None:  # pragma: no cover - startup should populate
        raise HTTPException(status_code=503, detail="Service not initialised")
    return settings


def _orchestrator() -> AnalyticsOrchestrator:
    _require_settings()
    return app.state.orchestrator


def _views_payload(orchestrator: AnalyticsOrchestrator) -> Dict[str, Any]:
    payload = to_payload(orchestrator.views)
    payload["generation"] = orchestrator.generation
    payload["last_fetch"] = getattr(app.state, "last_fetch", None)
    return payload


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    settings = _require_settings()
    return {
        "status": "ok",
        "source": "api" if settings.api_url else "file",
        "auto_fetch": settings.auto_fetch,
        "last_fetch": getattr(app.state, "last_fetch", None),
    }


@app.get("/api/analytics")
async def analytics() -> Dict[str, Any]:
    return _views_payload(_orchestrator())


@app.post("/api/filters")
async def update_filters(
    metric: Optional[str] = Query(None),
    time_period: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    clear_dates: bool = Query(False),
    group_by: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None),
    top_count: Optional[int] = Query(None),
    comparison_mode: Optional[str] = Query(None),
) -> Dict[str, Any]:
    settings = _require_settings()
    orchestrator = _orchestrator()
    before = orchestrator.generation
    # Validate everything first so a rejected request leaves the state untouched
    try:
        parsed_metric = MetricKind.parse(metric) if metric is not None else None
        parsed_period = TimePeriod.parse(time_period) if time_period is not None else None
        parsed_group = GroupKey.parse(group_by) if group_by is not None else None
        parsed_sort = SortKey.parse(sort_by) if sort_by is not None else None
        parsed_top = normalize_top_count(top_count) if top_count is not None else None
        parsed_mode = (
            ComparisonMode.parse(comparison_mode) if comparison_mode is not None else None
        )
    except InvalidFieldError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if parsed_metric is not None:
        orchestrator.on_metric_change(parsed_metric)
    if parsed_period is not None:
        orchestrator.on_time_period_change(parsed_period)
    if clear_dates:
        orchestrator.on_date_range_change(DateRange())
    if date_from is not None or date_to is not None:
        current = orchestrator.state.date_range
        orchestrator.on_date_range_change(
            DateRange(
                date_from if date_from is not None else current.from_date,
                date_to if date_to is not None else current.to_date,
            )
        )
    if parsed_group is not None:
        orchestrator.on_group_by_change(parsed_group)
    if parsed_sort is not None:
        orchestrator.on_sort_by_change(parsed_sort)
    if parsed_top is not None:
        orchestrator.on_top_count_change(parsed_top)
    if parsed_mode is not None:
        orchestrator.on_comparison_mode_change(parsed_mode)
    if orchestrator.generation != before and settings.auto_fetch:
        await _refresh(settings)
    return _views_payload(orchestrator)


@app.post("/api/table")
async def update_table(
    search: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    page: Optional[int] = Query(None),
) -> Dict[str, Any]:
    orchestrator = _orchestrator()
    try:
        if search is not None:
            orchestrator.on_search(search)
        if sort is not None:
            orchestrator.on_sort(sort)
        if page is not None:
            orchestrator.on_page_change(page)
    except InvalidFieldError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _views_payload(orchestrator)


@app.get("/api/export.csv")
async def export_csv() -> Response:
    orchestrator = _orchestrator()
    if orchestrator.validation_error:
        raise HTTPException(status_code=409, detail=orchestrator.validation_error)
    filename = orchestrator.export_filename()
    return Response(
        content=orchestrator.export_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/refresh", status_code=202)
async def refresh() -> Dict[str, Any]:
    settings = _require_settings()
    applied = await _refresh(settings)
    return {"status": "applied" if applied else "skipped"}


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import uvicorn

    uvicorn.run(
        "evdash_analytics.api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
