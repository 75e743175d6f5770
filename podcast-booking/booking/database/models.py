"""
Database models for the podcast booking system.
One central podcast cache shared by every consumer, plus per-consumer
analysis tables that never leak across clients or prospects.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float, JSON, ForeignKey,
    Index, UniqueConstraint
)
from sqlalchemy.ext.declarative import declarative_base
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite and Postgres columns are timezone-less)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Podcast(Base):
    """
    Central podcast cache, keyed by Podscan id.
    A row is the single source of truth for that podcast no matter which
    client or prospect triggered the fetch.
    """
    __tablename__ = "podcasts"

    # Primary key
    id = Column(Integer, primary_key=True)

    # Upstream identity (for cache lookup)
    podscan_id = Column(String(64), nullable=False, unique=True)

    # Descriptive snapshot (overwritten on every fetch)
    podcast_name = Column(String(500), nullable=False)
    podcast_description = Column(Text)
    podcast_image_url = Column(String(1000))
    podcast_url = Column(String(1000))
    publisher_name = Column(String(500))
    host_name = Column(String(500))
    podcast_categories = Column(JSON)  # [{"category_id": ..., "category_name": ...}]
    language = Column(String(20))
    region = Column(String(20))
    episode_count = Column(Integer)
    last_posted_at = Column(DateTime)
    is_active = Column(Boolean, default=True)
    podcast_has_guests = Column(Boolean)
    podcast_has_sponsors = Column(Boolean)

    # Ratings per source
    itunes_rating = Column(Float)
    itunes_rating_count = Column(Integer)
    itunes_rating_count_bracket = Column(String(50))
    spotify_rating = Column(Float)
    spotify_rating_count = Column(Integer)
    spotify_rating_count_bracket = Column(String(50))

    # Reach
    audience_size = Column(Integer)
    podcast_reach_score = Column(Float)
    podscan_email = Column(String(500))
    website = Column(String(1000))
    social_links = Column(JSON)  # [{"platform": ..., "url": ...}]
    rss_url = Column(String(1000))

    # Demographics (not every podcast has them)
    demographics = Column(JSON)
    demographics_episodes_analyzed = Column(Integer)
    demographics_fetched_at = Column(DateTime)

    # Semantic search vector, filled in after the row is first written
    embedding = Column(JSON(none_as_null=True))  # [float, ...]
    embedding_generated_at = Column(DateTime)
    embedding_model = Column(String(100))
    embedding_text_length = Column(Integer)

    # Cache bookkeeping (maintained by the store, never by callers)
    podscan_last_fetched_at = Column(DateTime, default=utcnow, nullable=False)
    podscan_fetch_count = Column(Integer, default=1, nullable=False)
    cache_hit_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_podcasts_last_fetched', 'podscan_last_fetched_at'),
    )


class _AnalysisColumns:
    """Columns shared by every per-consumer analysis table."""

    id = Column(Integer, primary_key=True)
    consumer_id = Column(String(64), nullable=False, index=True)

    # AI payload (null payload + analyzed_at set = attempted but failed)
    ai_clean_description = Column(Text)
    ai_fit_reasons = Column(JSON)  # ["reason", ...]
    ai_pitch_angles = Column(JSON)  # [{"title": ..., "description": ...}]
    ai_analyzed_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ClientPodcastAnalysis(_AnalysisColumns, Base):
    """AI fit analysis of a cached podcast for one client."""
    __tablename__ = "client_podcast_analyses"

    podcast_id = Column(Integer, ForeignKey("podcasts.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint('consumer_id', 'podcast_id', name='uq_client_podcast_analysis'),
    )


class ProspectPodcastAnalysis(_AnalysisColumns, Base):
    """AI fit analysis of a cached podcast for one prospect dashboard."""
    __tablename__ = "prospect_podcast_analyses"

    podcast_id = Column(Integer, ForeignKey("podcasts.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint('consumer_id', 'podcast_id', name='uq_prospect_podcast_analysis'),
    )


class PodcastFeedback(Base):
    """
    Approve/reject feedback a consumer left on a podcast in their dashboard.
    Removed together with the analyses when the podcast leaves their sheet.
    """
    __tablename__ = "podcast_feedback"

    id = Column(Integer, primary_key=True)
    consumer_kind = Column(String(20), nullable=False)  # "client", "prospect"
    consumer_id = Column(String(64), nullable=False)
    podscan_id = Column(String(64), nullable=False)

    status = Column(String(20))  # "approved", "rejected", ...
    notes = Column(Text)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('consumer_kind', 'consumer_id', 'podscan_id', name='uq_podcast_feedback'),
    )
