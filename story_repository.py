"""
Persistence for story documents and their decision history.
Stories are stored per owner as JSON files; every access is keyed by owner id.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from data_models import DecisionRecord, ImaginatorError, StoryProject

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class PersistenceError(ImaginatorError):
    """Raised when a story cannot be stored, read or deleted"""
    pass


class StoryRepository(Protocol):
    """Durable storage of story documents, scoped by owner"""

    async def save(self, project: StoryProject) -> None:
        ...

    async def load(self, story_id: str, owner_id: str) -> Optional[StoryProject]:
        ...

    async def list_by_owner(self, owner_id: str) -> List[StoryProject]:
        ...

    async def delete(self, story_id: str, owner_id: str) -> None:
        ...

    async def append_decision_history(self, record: DecisionRecord) -> None:
        ...

    async def load_decision_history(self, story_id: str, owner_id: str) -> List[DecisionRecord]:
        ...

    async def save_session_state(self, story_id: str, owner_id: str, state: Dict[str, Any]) -> None:
        ...

    async def load_session_state(self, story_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        ...


def _check_id(value: str, kind: str) -> str:
    if not value or not _SAFE_ID_RE.match(value) or value in (".", ".."):
        raise PersistenceError(f"Invalid {kind}: {value!r}")
    return value


class JsonStoryRepository:
    """Stores each story as <root>/<owner>/<story>.json with a JSON-lines history file"""

    def __init__(self, root: Union[str, Path], history_enabled: bool = True):
        self.root = Path(root)
        self.history_enabled = history_enabled

    def _owner_dir(self, owner_id: str) -> Path:
        return self.root / _check_id(owner_id, "owner id")

    def _story_path(self, story_id: str, owner_id: str) -> Path:
        return self._owner_dir(owner_id) / f"{_check_id(story_id, 'story id')}.json"

    def _history_path(self, story_id: str, owner_id: str) -> Path:
        return self._owner_dir(owner_id) / f"{_check_id(story_id, 'story id')}.history.jsonl"

    def _session_path(self, story_id: str, owner_id: str) -> Path:
        return self._owner_dir(owner_id) / f"{_check_id(story_id, 'story id')}.session"

    def _find_owner(self, story_id: str) -> Optional[str]:
        """Get the owner of a stored story, if any"""
        if not self.root.exists():
            return None
        for path in self.root.glob(f"*/{story_id}.json"):
            return path.parent.name
        return None

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save(self, project: StoryProject) -> None:
        """Write the full document atomically"""
        if not project.user_id:
            raise PersistenceError(f"Story {project.id} has no owner")
        story_id = _check_id(project.id, "story id")
        owner = self._find_owner(story_id)
        if owner is not None and owner != project.user_id:
            raise PersistenceError(f"Story {story_id} belongs to another owner")

        path = self._story_path(story_id, project.user_id)
        payload = project.to_dict()

        def write_file():
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            temp_file.replace(path)

        try:
            await self._run(write_file)
        except OSError as e:
            logger.error(f"Failed to save story {story_id}: {e}")
            raise PersistenceError(f"Failed to save story {story_id}: {e}") from e
        logger.info(f"Story saved to {path}")

    async def load(self, story_id: str, owner_id: str) -> Optional[StoryProject]:
        """Load a story; stories of other owners are reported as absent"""
        path = self._story_path(story_id, owner_id)

        def read_file() -> Optional[Dict[str, Any]]:
            if not path.exists():
                return None
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

        try:
            data = await self._run(read_file)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to load story {story_id}: {e}") from e

        if data is None:
            return None
        if data.get("user_id") != owner_id:
            logger.warning(f"Story {story_id} owner mismatch, refusing load for {owner_id}")
            return None
        try:
            return StoryProject.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise PersistenceError(f"Story {story_id} is corrupt: {e}") from e

    async def list_by_owner(self, owner_id: str) -> List[StoryProject]:
        """List an owner's stories, newest first, without characters or scenes"""
        owner_dir = self._owner_dir(owner_id)

        def read_summaries() -> List[Dict[str, Any]]:
            summaries = []
            if not owner_dir.exists():
                return summaries
            for path in owner_dir.glob("*.json"):
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        data = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Skipping unreadable story file {path}: {e}")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Skipping story file {path}: not a JSON object")
                    continue
                data.pop("characters", None)
                data.pop("scenes", None)
                summaries.append(data)
            return summaries

        summaries = await self._run(read_summaries)
        projects = []
        for summary in summaries:
            if summary.get("user_id") != owner_id:
                continue
            try:
                projects.append(StoryProject.from_dict(summary))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping corrupt story {summary.get('id')}: {e}")
        projects.sort(key=lambda p: p.updated_at, reverse=True)
        return projects

    async def delete(self, story_id: str, owner_id: str) -> None:
        """Delete a story together with its characters, scenes and history"""
        owner = self._find_owner(_check_id(story_id, "story id"))
        if owner is None:
            raise PersistenceError(f"Story {story_id} not found")
        if owner != owner_id:
            raise PersistenceError(f"Story {story_id} belongs to another owner")

        story_path = self._story_path(story_id, owner_id)
        extra_paths = [self._history_path(story_id, owner_id), self._session_path(story_id, owner_id)]

        def remove_files():
            story_path.unlink()
            for path in extra_paths:
                if path.exists():
                    path.unlink()

        try:
            await self._run(remove_files)
        except OSError as e:
            raise PersistenceError(f"Failed to delete story {story_id}: {e}") from e
        logger.info(f"Story {story_id} deleted")

    async def append_decision_history(self, record: DecisionRecord) -> None:
        """Append a resolved decision to the story's history log"""
        if not self.history_enabled:
            return
        if not record.user_id:
            raise PersistenceError(f"Decision {record.id} has no owner")
        path = self._history_path(record.story_id, record.user_id)
        line = json.dumps(record.to_dict(), ensure_ascii=False)

        def append_line():
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

        try:
            await self._run(append_line)
        except OSError as e:
            raise PersistenceError(f"Failed to record decision {record.id}: {e}") from e

    async def load_decision_history(self, story_id: str, owner_id: str) -> List[DecisionRecord]:
        """Read back the decision history of a story"""
        path = self._history_path(story_id, owner_id)

        def read_lines() -> List[str]:
            if not path.exists():
                return []
            return path.read_text(encoding="utf-8").splitlines()

        lines = await self._run(read_lines)
        return [DecisionRecord.from_dict(json.loads(line)) for line in lines if line.strip()]

    async def save_session_state(self, story_id: str, owner_id: str, state: Dict[str, Any]) -> None:
        """Keep the pending decision of a story so it resumes with the options it offered"""
        path = self._session_path(story_id, owner_id)
        payload = json.dumps(state, indent=2, ensure_ascii=False)

        def write_file():
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_name(path.name + ".tmp")
            temp_file.write_text(payload, encoding="utf-8")
            temp_file.replace(path)

        try:
            await self._run(write_file)
        except OSError as e:
            raise PersistenceError(f"Failed to save session of story {story_id}: {e}") from e

    async def load_session_state(self, story_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """Read a saved session; unreadable sessions are treated as absent"""
        path = self._session_path(story_id, owner_id)

        def read_file() -> Optional[Dict[str, Any]]:
            if not path.exists():
                return None
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

        try:
            state = await self._run(read_file)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session of story {story_id}: {e}")
            return None
        if state is not None and not isinstance(state, dict):
            logger.warning(f"Ignoring session of story {story_id}: not a JSON object")
            return None
        return state
