"""LLM client for transport insights."""

from .gemini_client import GeminiClient, build_insight_prompt
from .prompts import FALLBACK_INSIGHT, INSIGHT_PROMPT

__all__ = ["FALLBACK_INSIGHT", "GeminiClient", "INSIGHT_PROMPT", "build_insight_prompt"]
