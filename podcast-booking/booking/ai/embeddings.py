"""
Podcast embeddings for semantic search over the central cache.
"""

import logging
from typing import List, Optional

from openai import AsyncOpenAI

from ..config import settings
from ..ingestion.podscan_client import PodcastSnapshot

logger = logging.getLogger(__name__)

# Shorter texts carry too little signal to be worth a vector
MIN_EMBEDDING_TEXT_LENGTH = 10


def build_embedding_text(podcast: PodcastSnapshot) -> str:
    """Flatten the descriptive fields of a podcast into one embedding input."""
    parts = []
    if podcast.podcast_name:
        parts.append(f"Title: {podcast.podcast_name}")
    if podcast.podcast_description:
        parts.append(f"Description: {podcast.podcast_description[:500]}")
    categories = ", ".join(c.category_name for c in podcast.categories if c.category_name)
    if categories:
        parts.append(f"Categories: {categories}")
    if podcast.host_name:
        parts.append(f"Host: {podcast.host_name}")
    if podcast.publisher_name:
        parts.append(f"Publisher: {podcast.publisher_name}")
    if podcast.language:
        parts.append(f"Language: {podcast.language}")
    if podcast.region:
        parts.append(f"Region: {podcast.region}")
    return ". ".join(parts)


class PodcastEmbedder:
    """Embedding client backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        dimensions: int = settings.EMBEDDING_DIMENSIONS,
    ):
        if client is None:
            client = AsyncOpenAI(api_key=settings.require("OPENAI_API_KEY"))
        self.client = client
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions,
        )
        return list(response.data[0].embedding)
