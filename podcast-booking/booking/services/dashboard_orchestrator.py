"""
Dashboard orchestrator.
One entry point serves the client, prospect and outreach dashboards: read
the podcast ids from the consumer's sheet, resolve them against the central
cache, fetch what is missing from Podscan within the time budget, attach the
consumer's AI analyses and return the podcasts in sheet order.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..ai.fit_analyzer import FitAnalyzer
from ..config import ConfigurationError, settings
from ..database.annotations import Annotation, AnnotationStore
from ..database.cache_service import CachedPodcast, PodcastCacheService
from ..database.db import SessionLocal
from ..database.models import ClientPodcastAnalysis, ProspectPodcastAnalysis
from ..ingestion.podscan_client import PodcastSnapshot, PodscanClient
from ..ingestion.sheets import SheetReader, extract_spreadsheet_id
from .fit_analysis import ConsumerProfile, run_fit_analysis
from .podcast_fetcher import fetch_missing_podcasts

logger = logging.getLogger(__name__)


class DashboardRequestError(ValueError):
    """Bad request input (missing sheet id, missing bio for AI mode, ...)."""


@dataclass(frozen=True)
class ConsumerKind:
    """
    How one kind of consumer reads its sheet and stores analyses.
    Kinds without an analysis model get no AI and no garbage collection.
    """

    name: str
    analysis_model: Optional[type]
    column_range: str
    skip_header: bool

    @property
    def has_annotations(self) -> bool:
        return self.analysis_model is not None


CLIENT = ConsumerKind("client", ClientPodcastAnalysis, f"{settings.SHEET_ID_COLUMN}:{settings.SHEET_ID_COLUMN}", True)
PROSPECT = ConsumerKind("prospect", ProspectPodcastAnalysis, f"{settings.SHEET_ID_COLUMN}:{settings.SHEET_ID_COLUMN}", True)
OUTREACH = ConsumerKind(
    "outreach",
    None,
    f"{settings.SHEET_ID_COLUMN}2:{settings.SHEET_ID_COLUMN}{settings.OUTREACH_MAX_ROWS}",
    False,
)


@dataclass
class DashboardRequest:
    spreadsheet_id: str
    consumer_id: Optional[str] = None
    consumer_name: Optional[str] = None
    consumer_bio: Optional[str] = None
    cache_only: bool = False
    skip_ai_analysis: bool = False
    ai_analysis_only: bool = False
    check_status_only: bool = False
    refresh_stale: bool = False

    @property
    def has_profile(self) -> bool:
        return bool(self.consumer_name and self.consumer_bio and self.consumer_bio.strip())


def _categories(snapshot: PodcastSnapshot) -> List[Dict[str, str]]:
    return [{"category_id": c.category_id, "category_name": c.category_name} for c in snapshot.categories]


def present_podcast(snapshot: PodcastSnapshot, annotation: Optional[Annotation] = None) -> Dict[str, Any]:
    """Dashboard representation of one podcast, `podcast_id` being the Podscan id."""
    return {
        "podcast_id": snapshot.podscan_id,
        "podcast_name": snapshot.podcast_name,
        "podcast_description": snapshot.podcast_description,
        "podcast_image_url": snapshot.podcast_image_url,
        "podcast_url": snapshot.podcast_url,
        "publisher_name": snapshot.publisher_name,
        "itunes_rating": snapshot.itunes.average,
        "episode_count": snapshot.episode_count,
        "audience_size": snapshot.audience_size,
        "podcast_categories": _categories(snapshot),
        "podscan_email": snapshot.email,
        "demographics": snapshot.demographics.payload if snapshot.demographics else None,
        "ai_clean_description": annotation.clean_description if annotation else None,
        "ai_fit_reasons": annotation.fit_reasons if annotation and annotation.fit_reasons else None,
        "ai_pitch_angles": (
            [{"title": a.title, "description": a.description} for a in annotation.pitch_angles]
            if annotation and annotation.pitch_angles else None
        ),
        "ai_analyzed_at": annotation.analyzed_at.isoformat() if annotation and annotation.analyzed_at else None,
    }


class DashboardOrchestrator:
    """
    Runs a dashboard request for any ConsumerKind.

    Collaborators are injected so tests can swap the sheet, Podscan and the
    AI model without touching the network.
    """

    def __init__(
        self,
        cache: Optional[PodcastCacheService] = None,
        sheet_reader: Optional[SheetReader] = None,
        podscan_client_factory: Callable[[], PodscanClient] = PodscanClient,
        analyzer_factory: Callable[[], FitAnalyzer] = FitAnalyzer,
        session_factory: Callable[[], Session] = SessionLocal,
        budget_seconds: float = settings.MAX_RUNTIME_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.cache = cache or PodcastCacheService(session_factory)
        self.sheet_reader = sheet_reader or SheetReader()
        self.podscan_client_factory = podscan_client_factory
        self.analyzer_factory = analyzer_factory
        self.budget_seconds = budget_seconds
        self.clock = clock
        self._analyzer: Optional[FitAnalyzer] = None

    @property
    def analyzer(self) -> FitAnalyzer:
        if self._analyzer is None:
            self._analyzer = self.analyzer_factory()
        return self._analyzer

    def store_for(self, kind: ConsumerKind) -> Optional[AnnotationStore]:
        if not kind.has_annotations:
            return None
        return AnnotationStore(kind.analysis_model, kind.name, self.session_factory)

    def _validate(self, kind: ConsumerKind, request: DashboardRequest) -> str:
        spreadsheet_id = extract_spreadsheet_id(request.spreadsheet_id or "")
        if not spreadsheet_id:
            raise DashboardRequestError("spreadsheetId is required")
        if kind.has_annotations and not request.consumer_id:
            raise DashboardRequestError(f"{kind.name}Id is required")
        if request.ai_analysis_only:
            if not kind.has_annotations:
                raise DashboardRequestError(f"AI analysis is not available for {kind.name} podcasts")
            if not request.has_profile:
                raise DashboardRequestError(
                    f"{kind.name.capitalize()} name and bio are required for AI analysis. "
                    f"Please add a bio to the {kind.name} profile."
                )
        return spreadsheet_id

    async def run(self, kind: ConsumerKind, request: DashboardRequest) -> Dict[str, Any]:
        """
        Serve one dashboard request.

        Raises:
            DashboardRequestError: invalid input
            SheetReadError: the consumer's sheet could not be read
            ConfigurationError: a required credential is missing
        """
        spreadsheet_id = self._validate(kind, request)
        started = self.clock()
        logger.info(f"📋 {kind.name.capitalize()} dashboard request for {request.consumer_id or spreadsheet_id}")

        podcast_ids = await self.sheet_reader.aread_podcast_ids(
            spreadsheet_id, kind.column_range, skip_header=kind.skip_header
        )
        store = self.store_for(kind)
        full_mode = not (request.check_status_only or request.cache_only or request.ai_analysis_only)

        # Drop analyses for podcasts removed from the sheet
        if full_mode and store is not None:
            store.garbage_collect(request.consumer_id, podcast_ids)

        if not podcast_ids:
            return {"success": True, "podcasts": [], "total": 0}

        lookup = self.cache.resolve(podcast_ids, stale_days=settings.CACHE_STALE_DAYS)
        annotations: Dict[int, Annotation] = {}
        if store is not None:
            annotations = store.load(request.consumer_id, [p.id for p in lookup.cached])

        cached_with_ai = sum(1 for p in lookup.cached if p.id in annotations and annotations[p.id].has_analysis)
        cached_with_demographics = sum(1 for p in lookup.cached if p.snapshot.demographics is not None)

        if request.check_status_only:
            return {
                "success": True,
                "podcastIds": podcast_ids,
                "status": {
                    "totalInSheet": len(podcast_ids),
                    "cached": len(lookup.cached),
                    "missing": len(lookup.missing),
                    "stale": len(lookup.stale),
                    "withAi": cached_with_ai,
                    "withoutAi": len(lookup.cached) - cached_with_ai,
                    "withDemographics": cached_with_demographics,
                },
            }

        by_podscan_id: Dict[str, CachedPodcast] = {p.podscan_id: p for p in lookup.cached}

        if request.cache_only:
            ordered = [
                present_podcast(by_podscan_id[pid].snapshot, annotations.get(by_podscan_id[pid].id))
                for pid in podcast_ids if pid in by_podscan_id
            ]
            return {
                "success": True,
                "podcasts": ordered,
                "total": len(ordered),
                "cached": len(lookup.cached),
                "missing": len(lookup.missing),
                "stats": {
                    "fromSheet": len(podcast_ids),
                    "fromCache": len(lookup.cached),
                    "cachedWithAi": cached_with_ai,
                    "cachedWithDemographics": cached_with_demographics,
                },
            }

        profile = ConsumerProfile(
            consumer_id=request.consumer_id or "",
            name=request.consumer_name or "",
            bio=request.consumer_bio or "",
        )

        if request.ai_analysis_only:
            analysis = await run_fit_analysis(
                lookup.cached,
                profile,
                store,
                self.analyzer,
                budget_seconds=self.budget_seconds,
                batch_size=settings.AI_BATCH_SIZE,
                concurrent_batches=settings.AI_CONCURRENT_BATCHES,
                clock=self.clock,
            )
            return {
                "success": True,
                "aiComplete": analysis.ai_complete,
                "stoppedEarly": analysis.stopped_early,
                "analyzed": analysis.analyzed,
                "generated": analysis.generated,
                "remaining": analysis.remaining,
                "total": len(lookup.cached),
            }

        # Full sync
        to_fetch = list(lookup.missing)
        if request.refresh_stale and lookup.stale:
            wanted = set(lookup.missing) | set(lookup.stale)
            to_fetch = [pid for pid in podcast_ids if pid in wanted]

        fetch = None
        if to_fetch:
            async with self.podscan_client_factory() as client:
                fetch = await fetch_missing_podcasts(
                    to_fetch,
                    client,
                    self.cache,
                    budget_seconds=self.budget_seconds,
                    batch_size=settings.FETCH_BATCH_SIZE,
                    concurrent_batches=settings.FETCH_CONCURRENT_BATCHES,
                    clock=self.clock,
                )

        fetched: List[CachedPodcast] = []
        if fetch is not None:
            for snapshot in fetch.snapshots:
                row_id = fetch.row_ids.get(snapshot.podscan_id)
                if row_id is None and snapshot.podscan_id in by_podscan_id:
                    row_id = by_podscan_id[snapshot.podscan_id].id
                fetched.append(CachedPodcast(
                    id=row_id,
                    snapshot=snapshot,
                    podscan_last_fetched_at=None,
                    podscan_fetch_count=0,
                    cache_hit_count=0,
                ))

        ai_generated = 0
        ai_remaining = 0
        wants_ai = store is not None and request.has_profile and not request.skip_ai_analysis
        analyzable = [p for p in fetched if p.id]
        if wants_ai and analyzable:
            try:
                analyzer = self.analyzer
            except ConfigurationError as e:
                logger.warning(f"⚠️  Skipping AI analysis: {e}")
                analyzer = None
            if analyzer is not None:
                remaining_budget = self.budget_seconds - (self.clock() - started)
                analysis = await run_fit_analysis(
                    analyzable,
                    profile,
                    store,
                    analyzer,
                    budget_seconds=remaining_budget,
                    batch_size=settings.AI_BATCH_SIZE,
                    concurrent_batches=settings.AI_CONCURRENT_BATCHES,
                    clock=self.clock,
                )
                annotations.update(analysis.annotations)
                ai_generated = analysis.generated
                ai_remaining = analysis.remaining

        # Merge cached + fetched, keep sheet order
        merged: Dict[str, CachedPodcast] = dict(by_podscan_id)
        for podcast in fetched:
            merged[podcast.podscan_id] = podcast
        ordered = [
            present_podcast(merged[pid].snapshot, annotations.get(merged[pid].id))
            for pid in podcast_ids if pid in merged
        ]

        stopped_early = bool(fetch and fetch.stopped_early)
        remaining = fetch.remaining if fetch else 0
        refetched = {p.podscan_id for p in fetched} & set(lookup.stale)
        served_from_cache = len(lookup.cached) - len(refetched)
        logger.info(
            f"✅ Returning {len(ordered)} podcasts ({served_from_cache} cached, {len(fetched)} new)"
            + (f" - stopped early, {remaining} remaining" if stopped_early else "")
        )
        return {
            "success": True,
            "podcasts": ordered,
            "total": len(ordered),
            "cached": served_from_cache,
            "fetched": len(fetched),
            "stoppedEarly": stopped_early,
            "remaining": remaining,
            "remainingIds": fetch.remaining_ids if fetch else [],
            "stats": {
                "fromSheet": len(podcast_ids),
                "fromCache": served_from_cache,
                "stale": len(lookup.stale),
                "podscanFetched": fetch.podscan_fetched if fetch else 0,
                "demographicsFetched": fetch.demographics_fetched if fetch else 0,
                "failed": len(fetch.failed) if fetch else 0,
                "saved": fetch.saved if fetch else 0,
                "persisted": fetch.persisted if fetch else True,
                "aiAnalysesGenerated": ai_generated,
                "aiRemaining": ai_remaining,
                "cachedWithAi": cached_with_ai,
                "cachedWithDemographics": cached_with_demographics,
            },
        }


async def get_consumer_podcasts(
    request: DashboardRequest,
    kind: ConsumerKind,
    orchestrator: Optional[DashboardOrchestrator] = None,
) -> Dict[str, Any]:
    """Serve one dashboard request with a default-wired orchestrator unless one is given."""
    orchestrator = orchestrator or DashboardOrchestrator()
    return await orchestrator.run(kind, request)
