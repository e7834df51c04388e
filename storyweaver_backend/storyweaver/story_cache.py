import asyncio
import json
import logging
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .kv_storage import KeyValueStore, StorageFullError
from .models import Story
from .settings import STORY_CACHE_KEY, STORY_CACHE_LIMIT

logger = logging.getLogger(__name__)

_stories_adapter = TypeAdapter(List[Story])


class LocalStoryCache:
    """The most recent stories, persisted under one key so they can be reopened offline.

    Storage problems are logged and swallowed; the session keeps working from
    memory. Writes are load-modify-write of the whole array, so they are
    serialised with a lock.
    """

    def __init__(self, store: KeyValueStore, key: str = STORY_CACHE_KEY, limit: int = STORY_CACHE_LIMIT):
        self.store = store
        self.key = key
        self.limit = limit
        self._lock = asyncio.Lock()

    async def _load(self) -> List[Story]:
        try:
            raw = await self.store.get(self.key)
        except Exception as e:
            logger.warning(f"Story storage unavailable: {e}")
            return []
        if not raw:
            return []
        try:
            return _stories_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Stored stories are corrupt, ignoring them: {e.error_count()} errors")
            return []

    async def _write(self, stories: List[Story]) -> bool:
        payload = json.dumps([s.model_dump(mode="json", by_alias=True) for s in stories])
        try:
            await self.store.set(self.key, payload)
            return True
        except StorageFullError as e:
            logger.warning(f"Story storage full. Could not cache story media: {e}")
        except Exception as e:
            logger.warning(f"Story storage unavailable: {e}")
        return False

    async def save(self, story: Story) -> bool:
        async with self._lock:
            stories = [s for s in await self._load() if s.id != story.id]
            updated = [story] + stories
            return await self._write(updated[:self.limit])

    async def list(self) -> List[Story]:
        return await self._load()

    async def get(self, story_id: str) -> Optional[Story]:
        for story in await self._load():
            if story.id == story_id:
                return story
        return None

    async def patch_scene_media(self, story_id: str, scene_id: str, media_url: str) -> bool:
        async with self._lock:
            stories = await self._load()
            for story in stories:
                if story.id != story_id:
                    continue
                scene = story.find_scene(scene_id)
                if scene is None:
                    return False
                scene.media_url = media_url
                return await self._write(stories)
            return False
