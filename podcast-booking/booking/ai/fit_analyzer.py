"""
AI fit analysis module using OpenAI API.
Explains why a podcast suits a client/prospect and scores compatibility.
The model is treated as fallible: answers are parsed defensively and any
failure comes back as None rather than an exception.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from ..config import settings
from ..ingestion.podscan_client import PodcastSnapshot

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_SCORE_FALLBACK = re.compile(r"\b(10|[1-9])\b")


@dataclass
class PitchAngle:
    title: str
    description: str


@dataclass
class FitAnalysis:
    clean_description: Optional[str]
    fit_reasons: List[str] = field(default_factory=list)
    pitch_angles: List[PitchAngle] = field(default_factory=list)


@dataclass
class CompatibilityScore:
    podcast_id: str
    score: Optional[int]
    reasoning: Optional[str] = None


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull the first {...} object out of a free-text model answer."""
    if not text:
        return None
    cleaned = _CODE_FENCE.sub("", text.strip())
    match = _JSON_OBJECT.search(cleaned)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_fit_analysis(data: Optional[Dict[str, Any]]) -> Optional[FitAnalysis]:
    """Validate the oracle's JSON shape; anything unusable becomes None."""
    if not data:
        return None

    description = data.get("clean_description")
    raw_reasons = data.get("fit_reasons") or []
    raw_angles = data.get("pitch_angles") or []
    if not isinstance(raw_reasons, list) or not isinstance(raw_angles, list):
        return None

    reasons = [r.strip() for r in raw_reasons if isinstance(r, str) and r.strip()]
    angles = [
        PitchAngle(title=str(a.get("title", "")).strip(), description=str(a.get("description", "")).strip())
        for a in raw_angles
        if isinstance(a, dict) and a.get("title")
    ]

    if not reasons and not (isinstance(description, str) and description.strip()):
        return None
    return FitAnalysis(
        clean_description=description.strip() if isinstance(description, str) else None,
        fit_reasons=reasons[:4],
        pitch_angles=angles[:3],
    )


def _podcast_context(podcast: PodcastSnapshot) -> str:
    lines = [
        f"- **Name**: {podcast.podcast_name}",
        f"- **Description**: {podcast.podcast_description}" if podcast.podcast_description else None,
        f"- **URL**: {podcast.podcast_url}" if podcast.podcast_url else None,
        f"- **Publisher/Host**: {podcast.publisher_name}" if podcast.publisher_name else None,
        f"- **iTunes Rating**: {podcast.itunes.average}/5" if podcast.itunes.average else None,
        f"- **Episode Count**: {podcast.episode_count}" if podcast.episode_count else None,
        f"- **Audience Size**: {podcast.audience_size:,}" if podcast.audience_size else None,
    ]
    return "\n".join(line for line in lines if line)


class FitAnalyzer:
    """Scoring oracle backed by an OpenAI chat model."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        if client is None:
            client = AsyncOpenAI(api_key=settings.require("OPENAI_API_KEY"))
        self.client = client
        self.model = model or settings.OPENAI_MODEL

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=0,
        )
        return response.choices[0].message.content or ""

    async def analyze_fit(self, podcast: PodcastSnapshot, consumer_name: str, consumer_bio: str) -> Optional[FitAnalysis]:
        """
        Explain why a podcast fits a client or prospect.

        Args:
            podcast: Cached podcast snapshot
            consumer_name: Client/prospect name
            consumer_bio: Client/prospect bio

        Returns:
            FitAnalysis, or None when the model is unavailable or its answer
            cannot be parsed
        """
        prompt = f"""You are a podcast booking strategist analyzing why a specific podcast would be an excellent fit for a client.

## PODCAST INFORMATION
{_podcast_context(podcast)}

## CLIENT/PROSPECT INFORMATION
Name: {consumer_name}
Bio: {consumer_bio}

## YOUR TASK
Analyze why this podcast is a great match for this specific client.

## RESPONSE FORMAT
Return a JSON object with:
- "clean_description": A clear, concise description of what the podcast is about (1-2 sentences, no HTML)
- "fit_reasons": An array of 3-4 detailed reasons why this is a great fit (1-2 sentences each)
- "pitch_angles": An array of 3 specific episode topic ideas, each with "title" (5-8 words) and "description" (2-3 sentences)

Return ONLY valid JSON, no markdown code blocks."""

        try:
            text = await self._complete(prompt, max_tokens=2000)
        except Exception as e:
            logger.error(f"❌ Fit analysis failed for {podcast.podcast_name}: {e}")
            return None

        analysis = parse_fit_analysis(extract_json_object(text))
        if analysis is None:
            logger.warning(f"⚠️  Unparseable fit analysis for {podcast.podcast_name}")
        return analysis

    async def score_compatibility(self, consumer_bio: str, podcast: PodcastSnapshot) -> CompatibilityScore:
        """Rate client/podcast compatibility from 1 to 10."""
        categories = ", ".join(c.category_name for c in podcast.categories if c.category_name) or "None"
        podcast_info = "\n".join([
            f"Podcast Name: {podcast.podcast_name}",
            f"Host/Publisher: {podcast.publisher_name or 'Unknown'}",
            f"Description: {podcast.podcast_description or 'No description available'}",
            f"Categories: {categories}",
            f"Audience Size: {f'{podcast.audience_size:,}' if podcast.audience_size else 'Unknown'}",
            f"Episodes: {podcast.episode_count or 'Unknown'}",
        ])
        prompt = f"""You are a podcast booking expert. Rate the compatibility (1-10) between this client and podcast.

Client Bio:
{consumer_bio}

Podcast Information:
{podcast_info}

Scoring Guidelines:
- 9-10: Perfect match - client's expertise directly aligns with podcast's focus and audience
- 7-8: Strong match - related topics, good audience overlap
- 5-6: Moderate match - some relevance but not ideal
- 3-4: Weak match - tangentially related
- 1-2: Poor match - not relevant

Return your answer as JSON in this exact format:
{{
  "score": <number 1-10>,
  "reasoning": "<2-3 sentences explaining why this score>"
}}

CRITICAL: Your response must be ONLY valid JSON. No markdown, no code blocks, just the raw JSON object."""

        try:
            text = await self._complete(prompt, max_tokens=200)
        except Exception as e:
            logger.error(f"❌ Compatibility scoring failed for {podcast.podcast_name}: {e}")
            return CompatibilityScore(podcast_id=podcast.podscan_id, score=None)

        data = extract_json_object(text)
        if data and data.get("score") is not None:
            try:
                score = max(1, min(10, int(round(float(data["score"])))))
            except (TypeError, ValueError):
                score = None
            return CompatibilityScore(podcast_id=podcast.podscan_id, score=score, reasoning=data.get("reasoning"))

        # Fallback: first bare 1-10 number in the answer
        match = _SCORE_FALLBACK.search(text)
        if match:
            return CompatibilityScore(podcast_id=podcast.podscan_id, score=int(match.group(1)))
        logger.warning(f"⚠️  Could not parse compatibility score for {podcast.podcast_name}")
        return CompatibilityScore(podcast_id=podcast.podscan_id, score=None)

    async def score_many(self, consumer_bio: str, podcasts: Sequence[PodcastSnapshot]) -> List[CompatibilityScore]:
        return list(await asyncio.gather(*(self.score_compatibility(consumer_bio, p) for p in podcasts)))
