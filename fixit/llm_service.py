import base64
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import httpx

from fixit.schemas import DEPARTMENTS
from fixit.storage import CLOUDINARY_DELIVERY_HOST

logger = logging.getLogger(__name__)

SEVERITIES = ("low", "medium", "high", "critical")


@dataclass
class ImageClassification:
    """
    Result of classifying a civic issue photo.
    """

    title: str
    description: str
    category: Optional[str]
    severity: Optional[str]
    tags: list[str] = field(default_factory=list)
    is_relevant: bool = True

    @property
    def category_supported(self) -> bool:
        return self.category is None or self.category in DEPARTMENTS


class LLMServiceError(Exception):
    """Custom exception for LLM service errors."""

    pass


class LLMService:
    """Abstract base for image analysis services."""

    async def classify(self, image: bytes, mime_type: str) -> ImageClassification:
        """
        Classify a photo of a reported civic issue.

        Args:
            image: Raw image bytes
            mime_type: Image content type, e.g. image/jpeg

        Returns:
            ImageClassification with suggested fields

        Raises:
            LLMServiceError: If classification fails
        """
        raise NotImplementedError

    async def score_resolution(
        self, after: bytes, mime_type: str, before_url: Optional[str], description: str
    ) -> int:
        """
        Estimate (0-100) how confident we are that the after photo shows the
        reported problem fixed.

        Raises:
            LLMServiceError: If scoring fails
        """
        raise NotImplementedError


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        # Remove markdown code block markers
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]  # Remove 'json' language identifier
        content = content.strip()
    return content


def _normalize(value) -> Optional[str]:
    if not value:
        return None
    return str(value).strip().lower() or None


def parse_classification(content: str) -> ImageClassification:
    """Parse the model's JSON answer into an ImageClassification."""
    try:
        parsed = json.loads(_strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise LLMServiceError(f"Invalid JSON response from Gemini: {str(e)}")
    if not isinstance(parsed, dict):
        raise LLMServiceError("Gemini response is not a JSON object")

    tags = parsed.get("tags") or []
    if not isinstance(tags, list):
        tags = [str(tags)]

    severity = _normalize(parsed.get("severity"))
    return ImageClassification(
        title=str(parsed.get("title") or "").strip()[:100],
        description=str(parsed.get("description") or "").strip()[:1000],
        category=_normalize(parsed.get("category")),
        severity=severity if severity in SEVERITIES else None,
        tags=[str(tag).strip() for tag in tags if str(tag).strip()][:5],
        is_relevant=parsed.get("is_relevant") is not False,
    )


class GeminiService(LLMService):
    """
    Implementation of LLMService using the Gemini generateContent API.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 30.0,
        image_hosts: Optional[list[str]] = None,
    ):
        """
        Initialize Gemini Service

        Args:
            image_hosts: hosts reference images may be downloaded from
        """
        self.api_key = api_key
        self.image_hosts = set(image_hosts if image_hosts is not None else [CLOUDINARY_DELIVERY_HOST])
        self.model = model
        self.timeout = timeout
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def _generate(self, parts: list[dict]) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json={
                        "contents": [{"parts": parts}],
                        "generationConfig": {
                            "temperature": 0.2,
                            "responseMimeType": "application/json",
                        },
                    },
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Gemini API request failed: {str(e)}")
            raise LLMServiceError(f"Gemini API error: {str(e)}")

        logger.debug(f"Gemini response: {result}")
        try:
            content = result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.error(f"Unexpected Gemini response structure: {result}")
            raise LLMServiceError("Invalid response structure from Gemini")

        if not content:
            raise LLMServiceError("Empty content returned from Gemini")
        return content

    @staticmethod
    def _image_part(image: bytes, mime_type: str) -> dict:
        return {"inline_data": {"mime_type": mime_type or "image/jpeg", "data": base64.b64encode(image).decode()}}

    async def _download(self, url: str) -> Optional[tuple[bytes, str]]:
        try:
            host = httpx.URL(url).host
        except httpx.InvalidURL:
            return None
        if not url.startswith(("http://", "https://")) or host not in self.image_hosts:
            logger.warning(f"Refusing to download reference image from untrusted host: {url}")
            return None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Could not download reference image {url}: {str(e)}")
            return None
        return response.content, response.headers.get("content-type", "image/jpeg")

    async def classify(self, image: bytes, mime_type: str) -> ImageClassification:
        categories = ", ".join(DEPARTMENTS)
        prompt = f"""Analyze this image of a civic issue (like a pothole, garbage, broken street light, etc).
Return ONLY a raw JSON object (no markdown) with the following fields:
- "title": Short, precise title (e.g. "Deep Pothole on Main St")
- "description": clear description of the issue (2 sentences max)
- "category": Best match from [{categories}]
- "severity": one of [low, medium, high, critical]
- "tags": Array of 3-5 short descriptive tags (e.g. "large pothole", "flooding", "exposed wire")
- "is_relevant": Boolean (true if it looks like a civic issue)"""

        content = await self._generate([{"text": prompt}, self._image_part(image, mime_type)])
        return parse_classification(content)

    async def score_resolution(
        self, after: bytes, mime_type: str, before_url: Optional[str], description: str
    ) -> int:
        parts = [
            {
                "text": f"""A citizen reported this civic issue: "{description}".
The last image shows the site after the repair crew marked it fixed.
If an earlier image is included it is the original report.
Respond with ONLY a raw JSON object: {{"confidence": <integer 0-100 that the problem is fixed>}}"""
            }
        ]
        before = await self._download(before_url) if before_url else None
        if before:
            parts.append(self._image_part(*before))
        parts.append(self._image_part(after, mime_type))

        content = await self._generate(parts)
        try:
            confidence = int(json.loads(_strip_code_fences(content))["confidence"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise LLMServiceError(f"Invalid confidence in Gemini response: {str(e)}")
        return max(0, min(100, confidence))


def fallback_resolution_score(has_before_image: bool, has_work_started_image: bool) -> int:
    """
    Confidence used when no image model is available.

    Starts at 85 and adds 5 for each piece of photo evidence on file.
    """
    score = 85
    if has_before_image:
        score += 5
    if has_work_started_image:
        score += 5
    return min(score, 99)


def get_llm_service() -> Optional[LLMService]:
    """
    Factory function to get the configured image analysis service.

    Reads configuration from environment variables:
    - GEMINI_API_KEY: API key for Gemini
    - GEMINI_MODEL: model name (default gemini-2.5-flash)
    - IMAGE_FETCH_HOSTS: comma-separated hosts reference images may be
      downloaded from (default res.cloudinary.com)

    Returns:
        LLMService instance or None if not configured
    """
    api_key = os.getenv("GEMINI_API_KEY", "").strip()
    if not api_key:
        logger.info("GEMINI_API_KEY not set, image analysis disabled")
        return None
    hosts = os.getenv("IMAGE_FETCH_HOSTS", CLOUDINARY_DELIVERY_HOST)
    return GeminiService(
        api_key,
        model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        image_hosts=[h.strip() for h in hosts.split(",") if h.strip()],
    )
