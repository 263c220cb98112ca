"""
Multi-format export of finished stories.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, Union

from data_models import ExportFormat, ImaginatorError, StoryProject
from generation_service import PromptSpec, ProviderError, TextProvider
from prompts import export_prompt
from story_session import StorySession

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_TIMEOUT = 300.0
EXPORT_MAX_TOKENS = 8000


class PreconditionError(ImaginatorError):
    """Raised when an operation is invoked on a story that is not ready for it"""
    pass


def placeholder_export(target_format: ExportFormat) -> str:
    """Text returned when a format could not be generated"""
    return f"Export to {target_format.value} format will be generated here..."


def export_filename(project: StoryProject, target_format: ExportFormat) -> str:
    """File name for a downloaded export: <title>_<format>.txt"""
    title = re.sub(r"[^\w\- ]+", "", project.title).strip() or "story"
    return f"{title}_{target_format.value}.txt"


class ExportCoordinator:
    """Renders a story into a target format through the text provider"""

    def __init__(self, provider: TextProvider, timeout: float = DEFAULT_EXPORT_TIMEOUT):
        self.provider = provider
        self.timeout = timeout

    async def export_story(self, project: StoryProject,
                           target_format: Union[ExportFormat, str],
                           timeout: Optional[float] = None) -> str:
        """Render the story; provider failures yield a placeholder, never an error"""
        target_format = ExportFormat.parse(target_format)
        if not project.scenes:
            raise PreconditionError(f"Story {project.id} has no scenes to export")

        spec = PromptSpec(
            export_prompt(project, target_format),
            max_tokens=EXPORT_MAX_TOKENS,
            use_cache=False,
        )
        limit = timeout if timeout is not None else self.timeout
        logger.info(f"Exporting story {project.id} as {target_format.value}")

        try:
            text = await asyncio.wait_for(self.provider.generate(spec), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning(f"Export to {target_format.value} timed out after {limit}s")
            return placeholder_export(target_format)
        except ProviderError as e:
            logger.warning(f"Export to {target_format.value} failed: {e}")
            return placeholder_export(target_format)
        except Exception as e:
            logger.warning(f"Export to {target_format.value} failed unexpectedly: {e}")
            return placeholder_export(target_format)

        if not text or not text.strip():
            logger.warning(f"Export to {target_format.value} returned no text")
            return placeholder_export(target_format)
        return text

    async def export_session(self, session: StorySession,
                             target_format: Union[ExportFormat, str],
                             timeout: Optional[float] = None) -> str:
        """Export a story that is being built, unless a decision is in flight"""
        with session.claim("export"):
            return await self.export_story(session.project, target_format, timeout)

    async def save_export(self, project: StoryProject, target_format: Union[ExportFormat, str],
                          content: str, output_dir: Union[str, Path] = "exports") -> Path:
        """Write an export to <output_dir>/<title>_<format>.txt atomically"""
        target_format = ExportFormat.parse(target_format)
        path = Path(output_dir) / export_filename(project, target_format)

        def write_file():
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_suffix(".tmp")
            temp_file.write_text(content, encoding="utf-8")
            temp_file.replace(path)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_file)
        logger.info(f"Export saved to {path}")
        return path
