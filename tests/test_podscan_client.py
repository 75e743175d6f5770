"""
Tests for the Podscan API client and payload parsing.
"""

import httpx
import pytest

from booking.ingestion.podscan_client import (
    PodscanClient,
    PodscanError,
    parse_demographics,
    parse_podcast,
)

PODCAST_PAYLOAD = {
    "podcast": {
        "podcast_id": "pd_abc",
        "podcast_name": "Founders Table",
        "podcast_description": "Conversations with founders.",
        "thumbnail": "https://img.example/abc.png",
        "podcast_url": "https://example.com/founders",
        "publisher_name": "Table Media",
        "podcast_categories": [{"category_id": "ct_1", "category_name": "Business"}],
        "episode_count": "212",
        "last_posted_at": "2024-05-01T10:00:00+02:00",
        "podcast_has_guests": True,
        "reach": {
            "audience_size": 48000,
            "email": "hello@example.com",
            "itunes": {"itunes_rating_average": "4.7", "itunes_rating_count": 310},
            "spotify": {"spotify_rating_average": 4.5},
            "social_links": [{"platform": "twitter", "url": "https://x.com/ft"}, {"platform": "empty"}],
        },
    }
}


def _client(handler):
    return PodscanClient(api_key="test-key", base_url="https://podscan.test/api/v1", transport=httpx.MockTransport(handler))


class TestParsePodcast:
    """Tests for parse_podcast."""

    def test_parses_wrapped_payload(self):
        """Should unwrap {"podcast": ...} and type the nested blocks."""
        snapshot = parse_podcast("pd_abc", PODCAST_PAYLOAD)

        assert snapshot.podcast_name == "Founders Table"
        assert snapshot.podcast_image_url == "https://img.example/abc.png"
        assert snapshot.episode_count == 212
        assert snapshot.audience_size == 48000
        assert snapshot.itunes.average == 4.7
        assert snapshot.itunes.count == 310
        assert snapshot.spotify.average == 4.5
        assert snapshot.email == "hello@example.com"
        assert [c.category_name for c in snapshot.categories] == ["Business"]
        assert [s.platform for s in snapshot.social_links] == ["twitter"]

    def test_converts_timestamps_to_naive_utc(self):
        """Should store last_posted_at as naive UTC."""
        snapshot = parse_podcast("pd_abc", PODCAST_PAYLOAD)
        assert snapshot.last_posted_at.tzinfo is None
        assert snapshot.last_posted_at.hour == 8

    def test_bare_payload_and_defaults(self):
        """Should accept an unwrapped object and fill defaults."""
        snapshot = parse_podcast("pd_x", {"rating": 4.1, "audience_size": 900})

        assert snapshot.podcast_name == "Unknown Podcast"
        assert snapshot.itunes.average == 4.1
        assert snapshot.audience_size == 900
        assert snapshot.is_active is True
        assert snapshot.categories == []


class TestParseDemographics:
    """Tests for parse_demographics."""

    def test_requires_analyzed_episodes(self):
        assert parse_demographics(None) is None
        assert parse_demographics({"episodes_analyzed": 0}) is None

    def test_keeps_payload(self):
        demographics = parse_demographics({"episodes_analyzed": 12, "age": "25-34"})
        assert demographics.episodes_analyzed == 12
        assert demographics.payload["age"] == "25-34"


class TestPodscanClient:
    """Tests for PodscanClient HTTP behaviour."""

    @pytest.mark.asyncio
    async def test_get_podcast_sends_bearer_token(self):
        """Should authenticate with the API key and hit /podcasts/{id}."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json=PODCAST_PAYLOAD)

        async with _client(handler) as client:
            snapshot = await client.get_podcast("pd_abc")

        assert seen == {"auth": "Bearer test-key", "path": "/api/v1/podcasts/pd_abc"}
        assert snapshot.podscan_id == "pd_abc"

    @pytest.mark.asyncio
    async def test_error_status_raises_podscan_error(self):
        """Should raise PodscanError carrying status and id."""
        async with _client(lambda request: httpx.Response(500, text="boom")) as client:
            with pytest.raises(PodscanError) as exc_info:
                await client.get_podcast("pd_bad")

        assert exc_info.value.status_code == 500
        assert exc_info.value.podscan_id == "pd_bad"

    @pytest.mark.asyncio
    async def test_transport_error_raises_podscan_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        async with _client(handler) as client:
            with pytest.raises(PodscanError):
                await client.get_podcast("pd_abc")

    @pytest.mark.asyncio
    async def test_demographics_404_is_none(self):
        """Should treat a missing demographics resource as 'no demographics'."""
        async with _client(lambda request: httpx.Response(404, json={"error": "not found"})) as client:
            assert await client.get_demographics("pd_abc") is None

    @pytest.mark.asyncio
    async def test_demographics_server_error_raises(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(PodscanError):
                await client.get_demographics("pd_abc")

    @pytest.mark.asyncio
    async def test_non_json_body_raises_podscan_error(self):
        """Should turn an HTML body on a 200 into PodscanError carrying the status."""
        async with _client(lambda request: httpx.Response(200, text="<html>gateway</html>")) as client:
            with pytest.raises(PodscanError) as exc_info:
                await client.get_demographics("pd_abc")

        assert exc_info.value.status_code == 200
        assert exc_info.value.podscan_id == "pd_abc"

    @pytest.mark.asyncio
    async def test_non_object_podcast_payload_raises(self):
        async with _client(lambda request: httpx.Response(200, json=[1, 2])) as client:
            with pytest.raises(PodscanError):
                await client.get_podcast("pd_abc")

    @pytest.mark.asyncio
    async def test_search_passes_filters(self):
        """Should drop None filters and lowercase booleans."""
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={
                "podcasts": [{"podcast_id": "pd_1", "podcast_name": "One"}, {"podcast_name": "no id"}],
                "pagination": {"page": 1, "total": 1},
            })

        async with _client(handler) as client:
            result = await client.search_podcasts(query="saas", has_guests=True, category_ids=None)

        assert seen == {"query": "saas", "has_guests": "true"}
        assert [p.podscan_id for p in result["podcasts"]] == ["pd_1"]
        assert result["pagination"]["total"] == 1
