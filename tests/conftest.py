"""
Shared fixtures: a throwaway SQLite database per test and snapshot helpers.
"""

import sys
from datetime import timedelta
from pathlib import Path

# Add podcast-booking to path (go up one level from tests/ to root)
project_root = Path(__file__).parent.parent / "podcast-booking"
sys.path.insert(0, str(project_root))

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from booking.database.cache_service import PodcastCacheService
from booking.database.db import init_db, make_engine
from booking.database.models import Podcast, utcnow
from booking.ingestion.podscan_client import PodcastSnapshot, PodscanClient


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file."""
    engine = make_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def cache(session_factory):
    return PodcastCacheService(session_factory, auto_embed=False)


@pytest.fixture
def make_snapshot():
    def _make(podscan_id, name=None, **fields):
        return PodcastSnapshot(podscan_id=podscan_id, podcast_name=name or f"Podcast {podscan_id}", **fields)
    return _make


@pytest.fixture
def age_podcast(session_factory):
    """Backdate a cached row's last fetch by `days`."""
    def _age(podscan_id, days):
        db = session_factory()
        try:
            db.execute(
                update(Podcast)
                .where(Podcast.podscan_id == podscan_id)
                .values(podscan_last_fetched_at=utcnow() - timedelta(days=days))
            )
            db.commit()
        finally:
            db.close()
    return _age


@pytest.fixture
def read_row(session_factory):
    """Load a cached row by Podscan id (None if absent)."""
    def _read(podscan_id):
        db = session_factory()
        try:
            return db.query(Podcast).filter(Podcast.podscan_id == podscan_id).first()
        finally:
            db.close()
    return _read


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def _podscan_handler(fail_ids=(), no_demographics=(), broken_demographics=(), on_request=None):
    """MockTransport handler serving /podcasts/{id} and /podcasts/{id}/demographics."""

    async def handler(request):
        if on_request is not None:
            on_request(request)
        parts = request.url.path.rstrip("/").split("/")
        if parts[-1] == "demographics":
            podscan_id = parts[-2]
            if podscan_id in no_demographics:
                return httpx.Response(404, json={"error": "not found"})
            if podscan_id in broken_demographics:
                return httpx.Response(200, text="<html>gateway</html>")
            return httpx.Response(200, json={"episodes_analyzed": 4, "age": {"25-34": 0.4}})

        podscan_id = parts[-1]
        if podscan_id in fail_ids:
            return httpx.Response(500, text="upstream error")
        return httpx.Response(200, json={"podcast": {"podcast_id": podscan_id, "podcast_name": f"Show {podscan_id}"}})

    return handler


@pytest.fixture
def make_podscan_client():
    """PodscanClient factory backed by httpx.MockTransport."""
    def _make(handler=None, **handler_options):
        return PodscanClient(
            api_key="test-key",
            base_url="https://podscan.test/api/v1",
            transport=httpx.MockTransport(handler or _podscan_handler(**handler_options)),
        )
    return _make
