"""
Central podcast cache service.
Resolves requested Podscan ids against the shared `podcasts` table,
upserts freshly fetched snapshots, and keeps hit/fetch counters.

Every client and prospect reads from the same table, so a podcast fetched
for one campaign is free for every later campaign until it goes stale.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..ai.embeddings import MIN_EMBEDDING_TEXT_LENGTH, PodcastEmbedder, build_embedding_text
from ..config import settings
from ..ingestion.podscan_client import (
    Demographics,
    PodcastCategory,
    PodcastSnapshot,
    RatingSummary,
    SocialLink,
)
from .db import SessionLocal, dialect_insert
from .models import ClientPodcastAnalysis, Podcast, ProspectPodcastAnalysis, utcnow

logger = logging.getLogger(__name__)

# Columns overwritten on every fetch (last write wins, whole snapshot)
SNAPSHOT_COLUMNS = [
    "podcast_name", "podcast_description", "podcast_image_url", "podcast_url",
    "publisher_name", "host_name", "podcast_categories", "language", "region",
    "episode_count", "last_posted_at", "is_active", "podcast_has_guests",
    "podcast_has_sponsors", "itunes_rating", "itunes_rating_count",
    "itunes_rating_count_bracket", "spotify_rating", "spotify_rating_count",
    "spotify_rating_count_bracket", "audience_size", "podcast_reach_score",
    "podscan_email", "website", "social_links", "rss_url", "demographics",
    "demographics_episodes_analyzed", "demographics_fetched_at",
]


@dataclass
class CachedPodcast:
    """A row of the central cache, parsed back into typed values."""

    id: int
    snapshot: PodcastSnapshot
    podscan_last_fetched_at: datetime
    podscan_fetch_count: int
    cache_hit_count: int
    demographics_fetched_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def podscan_id(self) -> str:
        return self.snapshot.podscan_id


@dataclass
class CacheLookup:
    cached: List[CachedPodcast] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)


@dataclass
class UpsertResult:
    success: bool
    podcast_id: Optional[int] = None
    podscan_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchUpsertResult:
    success: bool
    count: int
    podscan_ids: List[str] = field(default_factory=list)
    row_ids: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


def row_to_cached(row: Podcast) -> CachedPodcast:
    """Parse a `podcasts` row (JSON blobs included) into a CachedPodcast."""
    demographics = None
    if row.demographics:
        demographics = Demographics(
            payload=row.demographics,
            episodes_analyzed=row.demographics_episodes_analyzed or 0,
        )

    snapshot = PodcastSnapshot(
        podscan_id=row.podscan_id,
        podcast_name=row.podcast_name,
        podcast_description=row.podcast_description,
        podcast_image_url=row.podcast_image_url,
        podcast_url=row.podcast_url,
        publisher_name=row.publisher_name,
        host_name=row.host_name,
        categories=[
            PodcastCategory(category_id=str(c.get("category_id", "")), category_name=c.get("category_name", ""))
            for c in (row.podcast_categories or [])
        ],
        language=row.language,
        region=row.region,
        episode_count=row.episode_count,
        last_posted_at=row.last_posted_at,
        is_active=row.is_active if row.is_active is not None else True,
        has_guests=row.podcast_has_guests,
        has_sponsors=row.podcast_has_sponsors,
        itunes=RatingSummary(row.itunes_rating, row.itunes_rating_count, row.itunes_rating_count_bracket),
        spotify=RatingSummary(row.spotify_rating, row.spotify_rating_count, row.spotify_rating_count_bracket),
        audience_size=row.audience_size,
        reach_score=row.podcast_reach_score,
        email=row.podscan_email,
        website=row.website,
        social_links=[
            SocialLink(platform=s.get("platform", ""), url=s.get("url", ""))
            for s in (row.social_links or [])
        ],
        rss_url=row.rss_url,
        demographics=demographics,
    )
    return CachedPodcast(
        id=row.id,
        snapshot=snapshot,
        podscan_last_fetched_at=row.podscan_last_fetched_at,
        podscan_fetch_count=row.podscan_fetch_count or 0,
        cache_hit_count=row.cache_hit_count or 0,
        demographics_fetched_at=row.demographics_fetched_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PodcastCacheService:
    """Resolver + reconciliation writer for the central podcast cache."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        embedder: Optional[PodcastEmbedder] = None,
        auto_embed: bool = True,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.auto_embed = auto_embed
        self._pending_hits: Set[asyncio.Task] = set()
        self._pending_embeddings: Set[asyncio.Task] = set()

    # ── Resolver ────────────────────────────────────────────────────────────

    def resolve(self, podscan_ids: Sequence[str], stale_days: int = settings.CACHE_STALE_DAYS) -> CacheLookup:
        """
        Partition requested ids into cached / missing / stale.

        Args:
            podscan_ids: Requested Podscan ids (duplicates are collapsed)
            stale_days: Rows fetched longer ago than this are stale

        Returns:
            CacheLookup where `cached` holds every row found (stale ones too),
            `missing` the ids with no row, and `stale` the found ids due for a
            re-fetch. Fresh rows get their hit counter bumped in the background.
        """
        requested = list(dict.fromkeys(podscan_ids))
        if not requested:
            return CacheLookup()

        db = self.session_factory()
        try:
            rows = db.execute(
                select(Podcast).where(Podcast.podscan_id.in_(requested))
            ).scalars().all()
            cached = [row_to_cached(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"❌ Error reading podcast cache: {e}")
            return CacheLookup(cached=[], missing=requested, stale=[])
        finally:
            db.close()

        threshold = utcnow() - timedelta(days=stale_days)
        found = {p.podscan_id for p in cached}
        missing = [pid for pid in requested if pid not in found]
        stale = [p.podscan_id for p in cached if p.podscan_last_fetched_at < threshold]
        hits = [p.podscan_id for p in cached if p.podscan_last_fetched_at >= threshold]

        if hits:
            self._dispatch_hits(hits)

        logger.info(f"📊 Podcast cache - cached: {len(cached)}, missing: {len(missing)}, stale: {len(stale)}")
        return CacheLookup(cached=cached, missing=missing, stale=stale)

    def increment_cache_hits(self, podscan_ids: Iterable[str]) -> int:
        """Bump cache_hit_count by one for each id (single UPDATE)."""
        ids = list(podscan_ids)
        db = self.session_factory()
        try:
            result = db.execute(
                update(Podcast)
                .where(Podcast.podscan_id.in_(ids))
                .values(cache_hit_count=Podcast.cache_hit_count + 1)
            )
            db.commit()
            return result.rowcount
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _dispatch_hits(self, podscan_ids: List[str]) -> None:
        """Fire-and-forget hit recording; the read never waits on it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # No event loop (scripts): record inline, still best effort
            try:
                self.increment_cache_hits(podscan_ids)
            except SQLAlchemyError as e:
                logger.error(f"❌ Error incrementing cache hits: {e}")
            return

        task = loop.create_task(asyncio.to_thread(self.increment_cache_hits, podscan_ids))
        self._pending_hits.add(task)
        task.add_done_callback(self._on_hits_recorded)

    def _on_hits_recorded(self, task: asyncio.Task) -> None:
        self._pending_hits.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ Error incrementing cache hits: {error}")
        else:
            logger.debug(f"✅ Cache hits recorded: {task.result()}")

    async def drain_pending_hits(self) -> None:
        """Wait for outstanding hit updates (shutdown, tests)."""
        if self._pending_hits:
            await asyncio.gather(*list(self._pending_hits), return_exceptions=True)

    # ── Writer ──────────────────────────────────────────────────────────────

    def _upsert(self, db: Session, snapshots: List[PodcastSnapshot]) -> None:
        now = utcnow()
        rows = []
        for snapshot in snapshots:
            row = snapshot.to_row()
            row.update({
                "demographics_fetched_at": now if snapshot.demographics else None,
                "podscan_last_fetched_at": now,
                "podscan_fetch_count": 1,
                "cache_hit_count": 0,
                "created_at": now,
                "updated_at": now,
            })
            rows.append(row)

        stmt = dialect_insert(db, Podcast).values(rows)
        set_ = {column: stmt.excluded[column] for column in SNAPSHOT_COLUMNS}
        set_.update({
            "podscan_last_fetched_at": stmt.excluded.podscan_last_fetched_at,
            "updated_at": stmt.excluded.updated_at,
            "podscan_fetch_count": Podcast.podscan_fetch_count + 1,
        })
        db.execute(stmt.on_conflict_do_update(index_elements=["podscan_id"], set_=set_))

    def upsert_one(self, snapshot: PodcastSnapshot) -> UpsertResult:
        """
        Create or overwrite one cache row.

        Returns:
            UpsertResult with the row id on success
        """
        db = self.session_factory()
        try:
            self._upsert(db, [snapshot])
            db.commit()
            row_id = db.execute(
                select(Podcast.id).where(Podcast.podscan_id == snapshot.podscan_id)
            ).scalar_one()
            logger.info(f"✅ Upserted podcast: {snapshot.podcast_name} ({snapshot.podscan_id})")
            self._dispatch_embeddings([snapshot.podscan_id])
            return UpsertResult(success=True, podcast_id=row_id, podscan_ids=[snapshot.podscan_id])
        except SQLAlchemyError as e:
            logger.error(f"❌ Error upserting podcast {snapshot.podscan_id}: {e}")
            db.rollback()
            return UpsertResult(success=False, podscan_ids=[snapshot.podscan_id], error=str(e))
        finally:
            db.close()

    def upsert_batch(self, snapshots: Sequence[PodcastSnapshot]) -> BatchUpsertResult:
        """
        Upsert many snapshots in one statement.

        On failure nothing from the batch is committed; the caller may retry
        the whole batch.
        """
        # One row per id, last snapshot wins
        unique = list({s.podscan_id: s for s in snapshots}.values())
        podscan_ids = [s.podscan_id for s in unique]
        if not unique:
            return BatchUpsertResult(success=True, count=0)

        db = self.session_factory()
        try:
            self._upsert(db, unique)
            db.commit()
            row_ids = dict(db.execute(
                select(Podcast.podscan_id, Podcast.id).where(Podcast.podscan_id.in_(podscan_ids))
            ).all())
            logger.info(f"✅ Batch upserted {len(unique)} podcasts")
            self._dispatch_embeddings(podscan_ids)
            return BatchUpsertResult(success=True, count=len(unique), podscan_ids=podscan_ids, row_ids=row_ids)
        except SQLAlchemyError as e:
            logger.error(f"❌ Batch upsert error ({len(unique)} podcasts): {e}")
            db.rollback()
            return BatchUpsertResult(success=False, count=0, podscan_ids=podscan_ids, errors=[str(e)])
        finally:
            db.close()

    def update_demographics(self, podscan_id: str, demographics: Demographics) -> bool:
        """Attach demographics to an already cached podcast."""
        db = self.session_factory()
        try:
            now = utcnow()
            result = db.execute(
                update(Podcast)
                .where(Podcast.podscan_id == podscan_id)
                .values(
                    demographics=demographics.payload,
                    demographics_episodes_analyzed=demographics.episodes_analyzed,
                    demographics_fetched_at=now,
                    updated_at=now,
                )
            )
            db.commit()
            if result.rowcount == 0:
                logger.warning(f"⚠️  No cached podcast to attach demographics to: {podscan_id}")
                return False
            logger.info(f"✅ Updated demographics for: {podscan_id}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Error updating demographics for {podscan_id}: {e}")
            db.rollback()
            return False
        finally:
            db.close()

    # ── Embeddings ──────────────────────────────────────────────────────────

    def _get_embedder(self) -> Optional[PodcastEmbedder]:
        if not self.auto_embed:
            return None
        if self.embedder is None:
            if not settings.OPENAI_API_KEY:
                logger.warning("⚠️  OPENAI_API_KEY not set, skipping embedding generation")
                return None
            self.embedder = PodcastEmbedder()
        return self.embedder

    def _rows_missing_embedding(self, podscan_ids: List[str]) -> List[CachedPodcast]:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(Podcast)
                .where(Podcast.podscan_id.in_(podscan_ids))
                .where(Podcast.embedding.is_(None))
            ).scalars().all()
            return [row_to_cached(row) for row in rows]
        finally:
            db.close()

    def save_embedding(self, podscan_id: str, embedding: List[float], model: str, text_length: int) -> bool:
        """Store the vector and its provenance on a cached podcast."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(Podcast)
                .where(Podcast.podscan_id == podscan_id)
                .values(
                    embedding=embedding,
                    embedding_generated_at=utcnow(),
                    embedding_model=model,
                    embedding_text_length=text_length,
                )
            )
            db.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to save embedding for {podscan_id}: {e}")
            db.rollback()
            return False
        finally:
            db.close()

    async def generate_missing_embeddings(
        self, podscan_ids: Sequence[str], embedder: Optional[PodcastEmbedder] = None
    ) -> int:
        """
        Embed the given podcasts that have no vector yet.

        Rows that already carry an embedding are left alone, so re-fetching a
        podcast never pays for a second vector.

        Returns:
            Number of embeddings stored
        """
        embedder = embedder or self._get_embedder()
        if embedder is None:
            return 0

        try:
            pending = await asyncio.to_thread(self._rows_missing_embedding, list(podscan_ids))
        except SQLAlchemyError as e:
            logger.error(f"❌ Error loading podcasts to embed: {e}")
            return 0
        if not pending:
            return 0

        logger.info(f"🔮 Generating embeddings for {len(pending)} new podcasts")
        generated = 0
        for podcast in pending:
            text = build_embedding_text(podcast.snapshot)
            if len(text.strip()) < MIN_EMBEDDING_TEXT_LENGTH:
                continue
            try:
                vector = await embedder.embed(text)
            except Exception as e:
                logger.error(f"❌ Embedding error for {podcast.snapshot.podcast_name}: {e}")
                continue
            if await asyncio.to_thread(self.save_embedding, podcast.podscan_id, vector, embedder.model, len(text)):
                generated += 1

        logger.info(f"🔮 Generated {generated}/{len(pending)} embeddings")
        return generated

    def _dispatch_embeddings(self, podscan_ids: List[str]) -> None:
        """Fire-and-forget embedding of freshly written rows."""
        if not podscan_ids or self._get_embedder() is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(self.generate_missing_embeddings(podscan_ids))
            return

        task = loop.create_task(self.generate_missing_embeddings(podscan_ids))
        self._pending_embeddings.add(task)
        task.add_done_callback(self._on_embeddings_done)

    def _on_embeddings_done(self, task: asyncio.Task) -> None:
        self._pending_embeddings.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Embedding generation failed: {task.exception()}")

    async def drain_pending_embeddings(self) -> None:
        """Wait for outstanding embedding jobs (shutdown, tests)."""
        if self._pending_embeddings:
            await asyncio.gather(*list(self._pending_embeddings), return_exceptions=True)

    # ── Maintenance & statistics ────────────────────────────────────────────

    def get_statistics(self, stale_days: int = settings.CACHE_STALE_DAYS) -> Dict[str, Any]:
        """
        Aggregate counters across the whole cache.

        Returns:
            Dict with totals, hit rate and an estimate of Podscan calls saved
        """
        threshold = utcnow() - timedelta(days=stale_days)
        db = self.session_factory()
        try:
            total, fetches, hits, with_demographics, with_embeddings, oldest, newest = db.execute(
                select(
                    func.count(Podcast.id),
                    func.coalesce(func.sum(Podcast.podscan_fetch_count), 0),
                    func.coalesce(func.sum(Podcast.cache_hit_count), 0),
                    func.count(Podcast.demographics_fetched_at),
                    func.count(Podcast.embedding_generated_at),
                    func.min(Podcast.podscan_last_fetched_at),
                    func.max(Podcast.podscan_last_fetched_at),
                )
            ).one()
            stale_count = db.execute(
                select(func.count(Podcast.id)).where(Podcast.podscan_last_fetched_at < threshold)
            ).scalar_one()
        finally:
            db.close()

        fetches = int(fetches)
        hits = int(hits)
        lookups = fetches + hits
        return {
            "total_podcasts": total,
            "total_fetches": fetches,
            "total_cache_hits": hits,
            "cache_hit_rate": round(hits / lookups, 4) if lookups else 0.0,
            # Every hit avoids a podcast call plus a demographics call
            "api_calls_saved": hits * 2,
            "podcasts_with_demographics": with_demographics,
            "podcasts_with_embeddings": with_embeddings,
            "stale_podcasts": stale_count,
            "oldest_fetch": oldest.isoformat() if oldest else None,
            "newest_fetch": newest.isoformat() if newest else None,
        }

    def cleanup_stale(self, stale_days: int = settings.CACHE_CLEANUP_DAYS) -> int:
        """
        Delete rows not re-fetched within `stale_days`, together with any
        per-consumer analyses pointing at them.

        Returns:
            Number of podcasts deleted
        """
        threshold = utcnow() - timedelta(days=stale_days)
        db = self.session_factory()
        try:
            stale_ids = db.execute(
                select(Podcast.id).where(Podcast.podscan_last_fetched_at < threshold)
            ).scalars().all()
            if not stale_ids:
                return 0
            for model in (ClientPodcastAnalysis, ProspectPodcastAnalysis):
                db.execute(delete(model).where(model.podcast_id.in_(stale_ids)))
            db.execute(delete(Podcast).where(Podcast.id.in_(stale_ids)))
            db.commit()
            logger.info(f"🧹 Cleaned up {len(stale_ids)} stale podcasts (older than {stale_days} days)")
            return len(stale_ids)
        except SQLAlchemyError as e:
            logger.error(f"❌ Error cleaning up stale cache: {e}")
            db.rollback()
            return 0
        finally:
            db.close()
