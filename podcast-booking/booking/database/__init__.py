"""
Database package for the central podcast cache.
"""

from .db import init_db, SessionLocal
from .models import Podcast, ClientPodcastAnalysis, ProspectPodcastAnalysis, PodcastFeedback
from .cache_service import PodcastCacheService
from .annotations import AnnotationStore

__all__ = [
    "init_db",
    "SessionLocal",
    "Podcast",
    "ClientPodcastAnalysis",
    "ProspectPodcastAnalysis",
    "PodcastFeedback",
    "PodcastCacheService",
    "AnnotationStore",
]
