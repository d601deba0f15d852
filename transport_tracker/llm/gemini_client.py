"""Google Gemini client for transport insights."""

import json
from typing import Sequence

import vertexai
from vertexai.generative_models import GenerativeModel
from loguru import logger
from tenacity import retry, stop_after_attempt, wait_exponential

from ..config import settings
from ..models import Release, TransportRecord
from .prompts import EMPTY_INSIGHT, FALLBACK_INSIGHT, INSIGHT_PROMPT, SYSTEM_PROMPT


def build_insight_prompt(
    records: Sequence[TransportRecord],
    releases: Sequence[Release],
    lang: str = "ar",
) -> str:
    """Fill the insight prompt with counts and the first ten trips."""
    details = [
        {"site": r.unloading_site, "weight": r.weight, "status": str(getattr(r.status, "value", r.status))}
        for r in records[:10]
    ]
    return INSIGHT_PROMPT.format(
        trip_count=len(records),
        release_count=len(releases),
        trip_details=json.dumps(details, ensure_ascii=False),
        language="Arabic" if lang == "ar" else "English",
    )


class GeminiClient:
    """Client for Gemini on Vertex AI."""

    def __init__(self):
        """Initialize Gemini client with Vertex AI."""
        try:
            # Uses Application Default Credentials
            vertexai.init(
                project=settings.gcp_project_id,
                location=settings.gcp_location,
            )

            self.model_name = "gemini-2.5-flash-lite"
            self.model = GenerativeModel(
                self.model_name,
                system_instruction=[SYSTEM_PROMPT]
            )
            logger.info(
                f"Vertex AI initialized (project: {settings.gcp_project_id}, "
                f"location: {settings.gcp_location}, model: {self.model_name})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize Vertex AI Gemini client: {e}")
            raise

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True
    )
    def _generate(self, prompt: str) -> str:
        response = self.model.generate_content(prompt)
        return (response.text or "").strip()

    def generate_insight(
        self,
        records: Sequence[TransportRecord],
        releases: Sequence[Release],
        lang: str = "ar",
    ) -> str:
        """One-line advice about the current trips; a fixed sentence on failure."""
        lang = "ar" if lang == "ar" else "en"
        try:
            text = self._generate(build_insight_prompt(records, releases, lang))
        except Exception as e:
            logger.warning(f"Insight generation failed (non-critical): {e}")
            return FALLBACK_INSIGHT[lang]

        logger.info(f"Generated insight for {len(records)} records")
        return text or EMPTY_INSIGHT[lang]
