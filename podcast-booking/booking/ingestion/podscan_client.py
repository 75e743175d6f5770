"""
Podscan directory API client.
Fetches podcast metadata and audience demographics by Podscan id and
parses the raw JSON into typed snapshots at the boundary.
No retry logic here: a failed id is retried by re-invoking the caller.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from dateutil import parser as date_parser

from ..config import settings

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(settings.REQUEST_TIMEOUT, connect=15.0)
_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)


class PodscanError(Exception):
    """Non-2xx response, unreadable body or transport failure from the Podscan API."""

    def __init__(self, message: str, status_code: Optional[int] = None, podscan_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.podscan_id = podscan_id


@dataclass
class PodcastCategory:
    category_id: str
    category_name: str


@dataclass
class SocialLink:
    platform: str
    url: str


@dataclass
class RatingSummary:
    average: Optional[float] = None
    count: Optional[int] = None
    count_bracket: Optional[str] = None


@dataclass
class Demographics:
    payload: Dict[str, Any]
    episodes_analyzed: int


@dataclass
class PodcastSnapshot:
    """Everything the central cache stores for one podcast, minus bookkeeping."""

    podscan_id: str
    podcast_name: str
    podcast_description: Optional[str] = None
    podcast_image_url: Optional[str] = None
    podcast_url: Optional[str] = None
    publisher_name: Optional[str] = None
    host_name: Optional[str] = None
    categories: List[PodcastCategory] = field(default_factory=list)
    language: Optional[str] = None
    region: Optional[str] = None
    episode_count: Optional[int] = None
    last_posted_at: Optional[datetime] = None
    is_active: bool = True
    has_guests: Optional[bool] = None
    has_sponsors: Optional[bool] = None
    itunes: RatingSummary = field(default_factory=RatingSummary)
    spotify: RatingSummary = field(default_factory=RatingSummary)
    audience_size: Optional[int] = None
    reach_score: Optional[float] = None
    email: Optional[str] = None
    website: Optional[str] = None
    social_links: List[SocialLink] = field(default_factory=list)
    rss_url: Optional[str] = None
    demographics: Optional[Demographics] = None

    def to_row(self) -> Dict[str, Any]:
        """Column values for the `podcasts` table (snapshot fields only)."""
        return {
            "podscan_id": self.podscan_id,
            "podcast_name": self.podcast_name,
            "podcast_description": self.podcast_description,
            "podcast_image_url": self.podcast_image_url,
            "podcast_url": self.podcast_url,
            "publisher_name": self.publisher_name,
            "host_name": self.host_name,
            "podcast_categories": [asdict(c) for c in self.categories],
            "language": self.language,
            "region": self.region,
            "episode_count": self.episode_count,
            "last_posted_at": self.last_posted_at,
            "is_active": self.is_active,
            "podcast_has_guests": self.has_guests,
            "podcast_has_sponsors": self.has_sponsors,
            "itunes_rating": self.itunes.average,
            "itunes_rating_count": self.itunes.count,
            "itunes_rating_count_bracket": self.itunes.count_bracket,
            "spotify_rating": self.spotify.average,
            "spotify_rating_count": self.spotify.count,
            "spotify_rating_count_bracket": self.spotify.count_bracket,
            "audience_size": self.audience_size,
            "podcast_reach_score": self.reach_score,
            "podscan_email": self.email,
            "website": self.website,
            "social_links": [asdict(s) for s in self.social_links],
            "rss_url": self.rss_url,
            "demographics": self.demographics.payload if self.demographics else None,
            "demographics_episodes_analyzed": self.demographics.episodes_analyzed if self.demographics else None,
        }


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(float(value)) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None
    # Stored as naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_rating(block: Optional[Dict[str, Any]], prefix: str) -> RatingSummary:
    if not block:
        return RatingSummary()
    return RatingSummary(
        average=_to_float(block.get(f"{prefix}_rating_average")),
        count=_to_int(block.get(f"{prefix}_rating_count")),
        count_bracket=block.get(f"{prefix}_rating_count_bracket"),
    )


def parse_demographics(data: Optional[Dict[str, Any]]) -> Optional[Demographics]:
    """Demographics only count when at least one episode was analyzed."""
    if not isinstance(data, dict) or not data.get("episodes_analyzed"):
        return None
    return Demographics(payload=data, episodes_analyzed=_to_int(data["episodes_analyzed"]) or 0)


def parse_podcast(podscan_id: str, data: Dict[str, Any]) -> PodcastSnapshot:
    """
    Convert a Podscan podcast payload into a PodcastSnapshot.

    Podscan wraps the object in {"podcast": {...}} on some endpoints and
    returns it bare on others; both shapes are accepted.
    """
    podcast = data.get("podcast") or data
    reach = podcast.get("reach") or {}

    itunes = _parse_rating(reach.get("itunes"), "itunes")
    if itunes.average is None:
        itunes.average = _to_float(podcast.get("rating"))

    categories = [
        PodcastCategory(
            category_id=str(c.get("category_id", "")),
            category_name=c.get("category_name", ""),
        )
        for c in (podcast.get("podcast_categories") or [])
        if isinstance(c, dict)
    ]
    social_links = [
        SocialLink(platform=s.get("platform", ""), url=s.get("url", ""))
        for s in (reach.get("social_links") or [])
        if isinstance(s, dict) and s.get("url")
    ]

    return PodcastSnapshot(
        podscan_id=podscan_id,
        podcast_name=podcast.get("podcast_name") or "Unknown Podcast",
        podcast_description=podcast.get("podcast_description") or None,
        podcast_image_url=podcast.get("podcast_image_url") or podcast.get("thumbnail") or None,
        podcast_url=podcast.get("podcast_url") or None,
        publisher_name=podcast.get("publisher_name") or None,
        host_name=podcast.get("host_name") or None,
        categories=categories,
        language=podcast.get("language") or None,
        region=podcast.get("region") or None,
        episode_count=_to_int(podcast.get("episode_count")),
        last_posted_at=_to_datetime(podcast.get("last_posted_at")),
        is_active=podcast.get("is_active", True) is not False,
        has_guests=podcast.get("podcast_has_guests"),
        has_sponsors=podcast.get("podcast_has_sponsors"),
        itunes=itunes,
        spotify=_parse_rating(reach.get("spotify"), "spotify"),
        audience_size=_to_int(reach.get("audience_size") or podcast.get("audience_size")),
        reach_score=_to_float(podcast.get("podcast_reach_score")),
        email=reach.get("email") or None,
        website=reach.get("website") or None,
        social_links=social_links,
        rss_url=podcast.get("rss_url") or None,
    )


class PodscanClient:
    """
    Thin async wrapper around the Podscan REST API.

    One httpx.AsyncClient is shared by all requests of an invocation so the
    concurrent fetch waves reuse connections.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.require("PODSCAN_API_KEY")
        self.base_url = (base_url or settings.PODSCAN_BASE_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
            timeout=_TIMEOUT,
            limits=_LIMITS,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> "PodscanClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, path: str, podscan_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise PodscanError(f"Podscan request failed for {path}: {e}", podscan_id=podscan_id) from e

        if response.status_code >= 400:
            raise PodscanError(
                f"Podscan API error {response.status_code} for {path}: {response.text[:200]}",
                status_code=response.status_code,
                podscan_id=podscan_id,
            )
        try:
            return response.json()
        except ValueError as e:
            raise PodscanError(
                f"Podscan returned invalid JSON for {path}: {response.text[:200]}",
                status_code=response.status_code,
                podscan_id=podscan_id,
            ) from e

    async def get_podcast(self, podscan_id: str) -> PodcastSnapshot:
        """Fetch one podcast's descriptive snapshot."""
        data = await self._get_json(f"/podcasts/{podscan_id}", podscan_id=podscan_id)
        if not isinstance(data, dict):
            raise PodscanError(f"Unexpected podcast payload for {podscan_id}", podscan_id=podscan_id)
        return parse_podcast(podscan_id, data)

    async def get_demographics(self, podscan_id: str) -> Optional[Demographics]:
        """
        Fetch audience demographics. Returns None when Podscan has none
        (404 or zero analyzed episodes); other errors raise PodscanError.
        """
        try:
            data = await self._get_json(f"/podcasts/{podscan_id}/demographics", podscan_id=podscan_id)
        except PodscanError as e:
            if e.status_code == 404:
                return None
            raise
        return parse_demographics(data)

    async def search_podcasts(self, **filters: Any) -> Dict[str, Any]:
        """
        Search the directory. Filters are passed through as query params
        (query, category_ids, per_page, order_by, min_audience_size, ...).

        Returns:
            {"podcasts": [PodcastSnapshot, ...], "pagination": {...}}
        """
        params = {k: str(v).lower() if isinstance(v, bool) else v for k, v in filters.items() if v is not None}
        data = await self._get_json("/podcasts/search", params=params)
        podcasts = [
            parse_podcast(str(p.get("podcast_id", "")), p)
            for p in (data.get("podcasts") or [])
            if p.get("podcast_id")
        ]
        logger.info(f"🔎 Podscan search returned {len(podcasts)} podcasts")
        return {"podcasts": podcasts, "pagination": data.get("pagination") or {}}
