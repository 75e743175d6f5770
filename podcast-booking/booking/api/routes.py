"""
API routes for the podcast booking cache.
Defines all FastAPI endpoint handlers.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from typing import Dict, Any, List, Optional
import logging

from ..config import ConfigurationError, settings
from ..ai.fit_analyzer import FitAnalyzer
from ..database.cache_service import PodcastCacheService
from ..ingestion.podscan_client import PodscanClient, PodscanError, parse_podcast
from ..ingestion.sheets import SheetReadError
from ..services.dashboard_orchestrator import (
    CLIENT,
    OUTREACH,
    PROSPECT,
    ConsumerKind,
    DashboardOrchestrator,
    DashboardRequest,
    DashboardRequestError,
    get_consumer_podcasts,
    present_podcast,
)

logger = logging.getLogger(__name__)


class DashboardBody(BaseModel):
    """Request body shared by the client, prospect and outreach dashboards."""

    model_config = ConfigDict(populate_by_name=True)

    spreadsheet_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("spreadsheetId", "spreadsheetUrl", "spreadsheet_id")
    )
    consumer_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientId", "prospectId", "consumerId", "consumer_id")
    )
    consumer_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientName", "prospectName", "consumerName", "consumer_name")
    )
    consumer_bio: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientBio", "prospectBio", "consumerBio", "consumer_bio")
    )
    cache_only: bool = Field(False, validation_alias=AliasChoices("cacheOnly", "cache_only"))
    skip_ai_analysis: bool = Field(False, validation_alias=AliasChoices("skipAiAnalysis", "skip_ai_analysis"))
    ai_analysis_only: bool = Field(False, validation_alias=AliasChoices("aiAnalysisOnly", "ai_analysis_only"))
    check_status_only: bool = Field(False, validation_alias=AliasChoices("checkStatusOnly", "check_status_only"))
    refresh_stale: bool = Field(False, validation_alias=AliasChoices("refreshStale", "refresh_stale"))

    def to_request(self) -> DashboardRequest:
        return DashboardRequest(
            spreadsheet_id=self.spreadsheet_id or "",
            consumer_id=self.consumer_id,
            consumer_name=self.consumer_name,
            consumer_bio=self.consumer_bio,
            cache_only=self.cache_only,
            skip_ai_analysis=self.skip_ai_analysis,
            ai_analysis_only=self.ai_analysis_only,
            check_status_only=self.check_status_only,
            refresh_stale=self.refresh_stale,
        )


FEEDBACK_STATUSES = ("approved", "rejected")

_CONSUMER_ID = AliasChoices("clientId", "prospectId", "consumerId", "consumer_id")


class ClearAnalysesBody(BaseModel):
    """Pairs to reset; no podcastIds means every analysis of the consumer."""

    consumer_id: Optional[str] = Field(None, validation_alias=_CONSUMER_ID)
    podcast_ids: Optional[List[str]] = Field(None, validation_alias=AliasChoices("podcastIds", "podcast_ids"))


class FeedbackBody(BaseModel):
    consumer_id: Optional[str] = Field(None, validation_alias=_CONSUMER_ID)
    podcast_id: Optional[str] = Field(None, validation_alias=AliasChoices("podcastId", "podcast_id"))
    status: Optional[str] = None
    notes: Optional[str] = None


class CompatibilityBody(BaseModel):
    client_bio: Optional[str] = Field(None, validation_alias=AliasChoices("clientBio", "client_bio"))
    podcasts: List[Dict[str, Any]] = Field(default_factory=list)


# Shared collaborators, created on first use so missing credentials only
# fail the endpoints that need them
_cache_service: Optional[PodcastCacheService] = None
_orchestrator: Optional[DashboardOrchestrator] = None


def get_cache_service() -> PodcastCacheService:
    global _cache_service
    if _cache_service is None:
        _cache_service = PodcastCacheService()
    return _cache_service


def get_orchestrator() -> DashboardOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DashboardOrchestrator(cache=get_cache_service())
    return _orchestrator


def get_podscan_client() -> PodscanClient:
    return PodscanClient()


def get_fit_analyzer() -> FitAnalyzer:
    return FitAnalyzer()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _run_dashboard(kind: ConsumerKind, body: DashboardBody, orchestrator: DashboardOrchestrator):
    try:
        return await get_consumer_podcasts(body.to_request(), kind, orchestrator)
    except DashboardRequestError as e:
        logger.warning(f"⚠️  Bad {kind.name} dashboard request: {e}")
        return _error(400, str(e))
    except (ConfigurationError, SheetReadError) as e:
        logger.error(f"❌ {kind.name.capitalize()} dashboard failed: {e}")
        return _error(500, str(e))
    except Exception as e:
        logger.error(f"❌ Unexpected error in {kind.name} dashboard: {e}", exc_info=True)
        return _error(500, str(e) or "Internal server error")


# Create API router
router = APIRouter()


@router.get("/")
async def health_check() -> Dict[str, str]:
    """
    Health check endpoint.

    Returns:
        Dict[str, str]: Status message
    """
    return {
        "status": "healthy",
        "message": f"{settings.APP_NAME} API is running",
        "version": settings.APP_VERSION,
    }


@router.post("/clients/podcasts")
async def get_client_podcasts(body: DashboardBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    """Client dashboard: podcasts from the client's sheet with fit analyses."""
    return await _run_dashboard(CLIENT, body, orchestrator)


@router.post("/prospects/podcasts")
async def get_prospect_podcasts(body: DashboardBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    """Prospect dashboard: same flow as clients, separate analysis table."""
    return await _run_dashboard(PROSPECT, body, orchestrator)


@router.post("/outreach/podcasts")
async def get_outreach_podcasts(body: DashboardBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    """Outreach list: podcast data only, no AI analysis."""
    return await _run_dashboard(OUTREACH, body, orchestrator)


@router.get("/cache/stats")
async def get_cache_stats(cache: PodcastCacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    """Aggregate statistics of the central podcast cache."""
    try:
        return {"success": True, "stats": cache.get_statistics()}
    except Exception as e:
        logger.error(f"❌ Error getting cache stats: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get cache stats: {str(e)}")


@router.post("/cache/cleanup")
async def cleanup_cache(
    stale_days: int = settings.CACHE_CLEANUP_DAYS,
    cache: PodcastCacheService = Depends(get_cache_service),
) -> Dict[str, Any]:
    """Delete podcasts not re-fetched within `stale_days`."""
    if stale_days < 1:
        raise HTTPException(status_code=400, detail="stale_days must be at least 1")
    deleted = cache.cleanup_stale(stale_days)
    return {"success": True, "deleted": deleted, "stale_days": stale_days}


@router.get("/podcasts/search")
async def search_podcasts(
    query: Optional[str] = None,
    category_ids: Optional[str] = None,
    min_audience_size: Optional[int] = None,
    has_guests: Optional[bool] = None,
    per_page: int = 20,
    page: int = 1,
    order_by: Optional[str] = None,
    client: PodscanClient = Depends(get_podscan_client),
) -> Dict[str, Any]:
    """Pass-through search of the Podscan directory."""
    try:
        async with client:
            result = await client.search_podcasts(
                query=query,
                category_ids=category_ids,
                min_audience_size=min_audience_size,
                has_guests=has_guests,
                per_page=per_page,
                page=page,
                order_by=order_by,
            )
    except PodscanError as e:
        logger.error(f"❌ Podscan search failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "success": True,
        "podcasts": [present_podcast(p) for p in result["podcasts"]],
        "pagination": result["pagination"],
    }


@router.post("/podcasts/score-compatibility")
async def score_compatibility(body: CompatibilityBody, analyzer: FitAnalyzer = Depends(get_fit_analyzer)):
    """Rate how well each podcast suits a client bio (1-10)."""
    if not body.client_bio or not body.client_bio.strip():
        return _error(400, "Client bio is required for compatibility scoring")
    podcasts = [p for p in body.podcasts if p.get("podcast_id")]
    if not podcasts:
        return _error(400, "Podcasts array is required")

    snapshots = [parse_podcast(str(p["podcast_id"]), p) for p in podcasts]
    scores = await analyzer.score_many(body.client_bio, snapshots)
    return {
        "success": True,
        "scores": [
            {"podcast_id": s.podcast_id, "score": s.score, "reasoning": s.reasoning}
            for s in scores
        ],
    }


def _clear_analyses(kind: ConsumerKind, body: ClearAnalysesBody, orchestrator: DashboardOrchestrator):
    if not body.consumer_id:
        return _error(400, f"{kind.name}Id is required")
    try:
        cleared = orchestrator.store_for(kind).clear_analysis(body.consumer_id, podscan_ids=body.podcast_ids)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error clearing {kind.name} analyses: {e}")
        return _error(500, f"Failed to clear analyses: {str(e)}")
    return {"success": True, "cleared": cleared}


def _save_feedback(kind: ConsumerKind, body: FeedbackBody, orchestrator: DashboardOrchestrator):
    if not body.consumer_id:
        return _error(400, f"{kind.name}Id is required")
    if not body.podcast_id:
        return _error(400, "podcastId is required")
    if body.status is not None and body.status not in FEEDBACK_STATUSES:
        return _error(400, f"status must be one of {', '.join(FEEDBACK_STATUSES)} or null")
    try:
        orchestrator.store_for(kind).save_feedback(body.consumer_id, body.podcast_id, body.status, body.notes)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error saving {kind.name} feedback: {e}")
        return _error(500, f"Failed to save feedback: {str(e)}")
    return {"success": True, "podcastId": body.podcast_id, "status": body.status}


@router.post("/clients/analyses/clear")
async def clear_client_analyses(body: ClearAnalysesBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    """Let AI analysis run again for a client (e.g. after an OpenAI outage)."""
    return _clear_analyses(CLIENT, body, orchestrator)


@router.post("/prospects/analyses/clear")
async def clear_prospect_analyses(body: ClearAnalysesBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    return _clear_analyses(PROSPECT, body, orchestrator)


@router.post("/clients/feedback")
async def save_client_feedback(body: FeedbackBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    """Record a client's approve/reject decision on a podcast."""
    return _save_feedback(CLIENT, body, orchestrator)


@router.post("/prospects/feedback")
async def save_prospect_feedback(body: FeedbackBody, orchestrator: DashboardOrchestrator = Depends(get_orchestrator)):
    return _save_feedback(PROSPECT, body, orchestrator)
