"""
Key-value stores backing the offline story cache.

The local file store stands in for browser local storage (one JSON document,
byte quota). The REST store talks to Vercel KV / Upstash so a deployed backend
can keep the cache across serverless invocations.
"""
import os
import json
import httpx
import logging
from typing import Dict, Optional, Protocol
from .settings import KV_REST_API_URL, KV_REST_API_TOKEN, STORY_CACHE_PATH, STORY_CACHE_MAX_BYTES

logger = logging.getLogger(__name__)


class StorageFullError(Exception):
    """Raised when a write would exceed the store's capacity."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...


class MemoryKVStore:
    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            others = sum(len(v.encode("utf-8")) for k, v in self.data.items() if k != key)
            if others + len(value.encode("utf-8")) > self.max_bytes:
                raise StorageFullError(f"Writing {key} exceeds {self.max_bytes} bytes")
        self.data[key] = value


class FileKVStore:
    def __init__(self, path: str = STORY_CACHE_PATH, max_bytes: int = STORY_CACHE_MAX_BYTES):
        self.path = path
        self.max_bytes = max_bytes

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected store contents in {self.path}")
        return data

    async def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    async def set(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except ValueError:
            logger.warning(f"Store file {self.path} is corrupt, starting over")
            data = {}
        data[key] = value
        payload = json.dumps(data)
        if len(payload.encode("utf-8")) > self.max_bytes:
            raise StorageFullError(f"Store would grow past {self.max_bytes} bytes")
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, self.path)


class RestKVStore:
    def __init__(self, url: str = KV_REST_API_URL, token: str = KV_REST_API_TOKEN,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.kv_rest_api_url = url
        self.kv_rest_api_token = token
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _command(self, *args: str):
        async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
            response = await client.post(self.kv_rest_api_url, headers=self._headers(), json=list(args))
            if response.status_code == 413:
                raise StorageFullError(f"KV rejected value for {args[1]}: payload too large")
            response.raise_for_status()
            body = response.json()
            if isinstance(body, dict) and body.get("error"):
                if "max" in body["error"].lower() and "size" in body["error"].lower():
                    raise StorageFullError(body["error"])
                raise RuntimeError(f"KV command {args[0]} failed: {body['error']}")
            return body.get("result") if isinstance(body, dict) else None

    async def get(self, key: str) -> Optional[str]:
        result = await self._command("GET", key)
        if result is None:
            logger.info(f"Key {key} not found in KV")
        return result

    async def set(self, key: str, value: str) -> None:
        await self._command("SET", key, value)
        logger.info(f"Stored {key} in KV")


def default_store() -> KeyValueStore:
    if KV_REST_API_URL and KV_REST_API_TOKEN:
        logger.info("KV storage enabled")
        return RestKVStore()
    logger.info(f"KV storage not configured - using local file {STORY_CACHE_PATH}")
    return FileKVStore()
