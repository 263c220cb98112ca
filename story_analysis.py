"""
AI critique of a story's health, complementing the numeric health scores.
"""

import asyncio
import logging
from typing import Optional

from data_models import StoryProject
from generation_service import PromptSpec, ProviderError, TextProvider
from prompts import analysis_prompt
from response_parsing import HealthAnalysis, parse_health_analysis

logger = logging.getLogger(__name__)


def fallback_analysis() -> HealthAnalysis:
    return HealthAnalysis(
        analysis="Story analysis will be generated here...",
        recommendations=["Continue developing the premise", "Add more character depth"],
        strengths=["Strong concept", "Clear vision"],
        weaknesses=["Needs more development", "Requires deeper analysis"],
        degraded=True,
    )


class StoryAnalyst:
    """Asks the provider for recommendations, strengths and weaknesses"""

    def __init__(self, provider: TextProvider, timeout: float = 120.0):
        self.provider = provider
        self.timeout = timeout

    async def analyze(self, project: StoryProject, timeout: Optional[float] = None) -> HealthAnalysis:
        limit = timeout if timeout is not None else self.timeout
        spec = PromptSpec(analysis_prompt(project), expect_json=True, use_cache=False)

        try:
            text = await asyncio.wait_for(self.provider.generate(spec), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning(f"Story analysis timed out after {limit}s")
            return fallback_analysis()
        except ProviderError as e:
            logger.warning(f"Story analysis failed: {e}")
            return fallback_analysis()
        except Exception as e:
            logger.warning(f"Story analysis failed unexpectedly: {e}")
            return fallback_analysis()

        parsed = parse_health_analysis(text)
        if not parsed.ok:
            logger.warning(f"Story analysis response rejected: {parsed.error}")
            return fallback_analysis()
        return parsed.value
