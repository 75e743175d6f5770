"""
Per-consumer annotation store.
AI fit analyses are specific to one client or prospect, so they live in
their own tables keyed by (consumer_id, podcast row id) and never touch
the shared podcast cache.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..ai.fit_analyzer import FitAnalysis, PitchAngle
from .db import SessionLocal, dialect_insert
from .models import Podcast, PodcastFeedback, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Annotation:
    podcast_id: int
    clean_description: Optional[str] = None
    fit_reasons: List[str] = field(default_factory=list)
    pitch_angles: List[PitchAngle] = field(default_factory=list)
    analyzed_at: Optional[datetime] = None

    @property
    def has_analysis(self) -> bool:
        return bool(self.fit_reasons)


def _row_to_annotation(row) -> Annotation:
    return Annotation(
        podcast_id=row.podcast_id,
        clean_description=row.ai_clean_description,
        fit_reasons=list(row.ai_fit_reasons or []),
        pitch_angles=[
            PitchAngle(title=a.get("title", ""), description=a.get("description", ""))
            for a in (row.ai_pitch_angles or [])
        ],
        analyzed_at=row.ai_analyzed_at,
    )


class AnnotationStore:
    """
    Reads and writes one analysis table (clients or prospects).

    Args:
        model: ClientPodcastAnalysis or ProspectPodcastAnalysis
        consumer_kind: "client" / "prospect", used to scope feedback rows
        session_factory: SQLAlchemy session factory
    """

    def __init__(self, model, consumer_kind: str, session_factory: Callable[[], Session] = SessionLocal):
        self.model = model
        self.consumer_kind = consumer_kind
        self.session_factory = session_factory

    def load(self, consumer_id: str, podcast_ids: Iterable[int]) -> Dict[int, Annotation]:
        """Existing annotations for this consumer, keyed by podcast row id."""
        ids = list(podcast_ids)
        if not ids:
            return {}
        db = self.session_factory()
        try:
            rows = db.execute(
                select(self.model).where(
                    self.model.consumer_id == consumer_id,
                    self.model.podcast_id.in_(ids),
                )
            ).scalars().all()
            return {row.podcast_id: _row_to_annotation(row) for row in rows}
        finally:
            db.close()

    def needs_analysis(self, consumer_id: str, podcast_id: int) -> bool:
        """True when the pair was never analyzed (no row, or analyzed_at is null)."""
        annotation = self.load(consumer_id, [podcast_id]).get(podcast_id)
        return annotation is None or annotation.analyzed_at is None

    def pending(self, consumer_id: str, podcast_ids: Sequence[int]) -> List[int]:
        """Subset of podcast_ids that still needs analysis, input order kept."""
        existing = self.load(consumer_id, podcast_ids)
        return [
            pid for pid in dict.fromkeys(podcast_ids)
            if pid not in existing or existing[pid].analyzed_at is None
        ]

    def mark_analyzed(self, consumer_id: str, podcast_id: int, analysis: Optional[FitAnalysis]) -> Optional[Annotation]:
        """
        Record an analysis attempt. A None analysis still stamps analyzed_at so
        the pair is not retried on every call.

        Returns:
            The stored Annotation, or None if the write failed
        """
        now = utcnow()
        values = {
            "consumer_id": consumer_id,
            "podcast_id": podcast_id,
            "ai_analyzed_at": now,
            "created_at": now,
            "updated_at": now,
        }
        set_columns = ["ai_analyzed_at", "updated_at"]
        if analysis is not None:
            values.update({
                "ai_clean_description": analysis.clean_description,
                "ai_fit_reasons": list(analysis.fit_reasons),
                "ai_pitch_angles": [{"title": a.title, "description": a.description} for a in analysis.pitch_angles],
            })
            set_columns += ["ai_clean_description", "ai_fit_reasons", "ai_pitch_angles"]

        db = self.session_factory()
        try:
            stmt = dialect_insert(db, self.model).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["consumer_id", "podcast_id"],
                set_={column: stmt.excluded[column] for column in set_columns},
            )
            db.execute(stmt)
            db.commit()
            row = db.execute(
                select(self.model).where(
                    self.model.consumer_id == consumer_id,
                    self.model.podcast_id == podcast_id,
                )
            ).scalar_one()
            return _row_to_annotation(row)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to save {self.consumer_kind} analysis for podcast {podcast_id}: {e}")
            db.rollback()
            return None
        finally:
            db.close()

    def clear_analysis(
        self,
        consumer_id: str,
        podcast_ids: Optional[Iterable[int]] = None,
        podscan_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Reset analyses so they run again (e.g. after an AI outage marked
        pairs as attempted). Pairs can be picked by cache row id or by
        Podscan id; with neither, every pair of the consumer is reset.
        """
        db = self.session_factory()
        try:
            stmt = update(self.model).where(self.model.consumer_id == consumer_id)
            if podcast_ids is not None:
                stmt = stmt.where(self.model.podcast_id.in_(list(podcast_ids)))
            if podscan_ids is not None:
                rows = select(Podcast.id).where(Podcast.podscan_id.in_(list(podscan_ids)))
                stmt = stmt.where(self.model.podcast_id.in_(rows))
            result = db.execute(stmt.values(
                ai_analyzed_at=None,
                ai_clean_description=None,
                ai_fit_reasons=None,
                ai_pitch_angles=None,
                updated_at=utcnow(),
            ))
            db.commit()
            logger.info(f"🔄 Cleared {result.rowcount} {self.consumer_kind} analyses for {consumer_id}")
            return result.rowcount
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def garbage_collect(self, consumer_id: str, keep_podscan_ids: Iterable[str]) -> int:
        """
        Delete this consumer's analyses and feedback for podcasts that are no
        longer in their sheet. An empty keep list clears everything.

        Returns:
            Number of analysis rows removed
        """
        keep: Set[str] = set(keep_podscan_ids)
        db = self.session_factory()
        try:
            rows = db.execute(
                select(self.model.id, Podcast.podscan_id)
                .join(Podcast, Podcast.id == self.model.podcast_id)
                .where(self.model.consumer_id == consumer_id)
            ).all()
            stale_rows = [row_id for row_id, podscan_id in rows if podscan_id not in keep]

            if stale_rows:
                db.execute(delete(self.model).where(self.model.id.in_(stale_rows)))

            feedback_ids = db.execute(
                select(PodcastFeedback.id, PodcastFeedback.podscan_id).where(
                    PodcastFeedback.consumer_kind == self.consumer_kind,
                    PodcastFeedback.consumer_id == consumer_id,
                )
            ).all()
            stale_feedback = [fid for fid, podscan_id in feedback_ids if podscan_id not in keep]
            if stale_feedback:
                db.execute(delete(PodcastFeedback).where(PodcastFeedback.id.in_(stale_feedback)))

            db.commit()
            if stale_rows or stale_feedback:
                logger.info(
                    f"🧹 Removed {len(stale_rows)} stale analyses and {len(stale_feedback)} feedback rows "
                    f"for {self.consumer_kind} {consumer_id}"
                )
            return len(stale_rows)
        except SQLAlchemyError as e:
            # Stale rows are harmless until the next sync, don't fail the request
            logger.error(f"❌ Error deleting stale {self.consumer_kind} cache for {consumer_id}: {e}")
            db.rollback()
            return 0
        finally:
            db.close()

    def save_feedback(self, consumer_id: str, podscan_id: str, status: str, notes: Optional[str] = None) -> None:
        """Store (or replace) a consumer's approve/reject decision on a podcast."""
        now = utcnow()
        db = self.session_factory()
        try:
            stmt = dialect_insert(db, PodcastFeedback).values(
                consumer_kind=self.consumer_kind,
                consumer_id=consumer_id,
                podscan_id=podscan_id,
                status=status,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            db.execute(stmt.on_conflict_do_update(
                index_elements=["consumer_kind", "consumer_id", "podscan_id"],
                set_={"status": stmt.excluded.status, "notes": stmt.excluded.notes, "updated_at": stmt.excluded.updated_at},
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
