import os, math, httpx, asyncio, logging
from typing import Any, Dict, Optional
from .settings import (
    REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S,
    VIDEO_POLL_INTERVAL_S, VIDEO_POLL_MAX_ATTEMPTS, VIDEO_MODEL,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.replicate.com/v1"

# Swapped for an httpx.MockTransport in tests
_transport: Optional[httpx.AsyncBaseTransport] = None

def _async_client(timeout: float = 30) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, transport=_transport)

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        # Could be owner/name or owner/name:versionAlias
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    # Fallback assume it's a version hash
    return "version", {"version": selector}

async def _asleep(sec: float):
    await asyncio.sleep(sec)

def _first_output(output: Any) -> Optional[str]:
    # Some models return a single URL, others a list of URLs
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list) and output and isinstance(output[0], str):
        return output[0]
    return None

async def _create(client: httpx.AsyncClient, selector: str, model_input: Dict[str, Any]) -> str:
    json_body: Dict[str, Any] = {"input": model_input}
    mode, data = _parse_selector(selector)
    if mode == "version":
        json_body["version"] = data["version"]
        url = f"{API_BASE}/predictions"
    else:
        url = f"{API_BASE}/models/{data['owner']}/{data['name']}/predictions"

    logger.info(f"Sending request to Replicate: {url}")
    headers = {**_headers(), "Content-Type": "application/json"}
    r = await client.post(url, headers=headers, json=json_body)
    if r.status_code >= 400:
        logger.error(f"Replicate create failed {r.status_code}: {r.text}")
        if mode == "model" and r.status_code == 404:
            # Model endpoint unavailable for this model; resolve the latest version instead
            logger.info("Falling back to latest version resolution for model")
            model_resp = await client.get(f"{API_BASE}/models/{data['owner']}/{data['name']}", headers=_headers())
            if model_resp.status_code >= 400:
                raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
            version_id = (model_resp.json().get("latest_version") or {}).get("id")
            if not version_id:
                raise RuntimeError("Could not resolve latest version for model")
            logger.info(f"Resolved latest version: {version_id}")
            r = await client.post(f"{API_BASE}/predictions", headers=headers, json={**json_body, "version": version_id})
            if r.status_code >= 400:
                raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
        else:
            raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
    pred_id = r.json()["id"]
    logger.info(f"Replicate prediction created with ID: {pred_id}")
    return pred_id

async def _wait(client: httpx.AsyncClient, pred_id: str, interval_s: float, max_attempts: int) -> str:
    for attempt in range(max_attempts):
        s = await client.get(f"{API_BASE}/predictions/{pred_id}", headers=_headers())
        if s.status_code >= 400:
            logger.error(f"Replicate status failed {s.status_code}: {s.text}")
            raise RuntimeError(f"Replicate status failed {s.status_code}: {s.text}")
        body = s.json()
        status = body.get("status")
        logger.info(f"Replicate prediction {pred_id} status: {status} (poll {attempt + 1}/{max_attempts})")

        if status in ("succeeded", "failed", "canceled"):
            if status != "succeeded":
                logs = body.get("logs")
                error_detail = body.get("error")
                logger.error(f"Replicate failed: {status}. logs={logs} error={error_detail}")
                raise RuntimeError(f"Replicate failed: {status}. logs={logs} error={error_detail}")
            url = _first_output(body.get("output"))
            if not url:
                logger.error("Replicate succeeded but no output URL")
                raise RuntimeError("Replicate succeeded but no output URL")
            logger.info(f"Replicate prediction succeeded, got output URL: {url}")
            return url
        await _asleep(interval_s)
    logger.error(f"Replicate polling gave up after {max_attempts} attempts")
    raise TimeoutError("Replicate polling timeout")

async def create_and_wait_image(prompt: str, model: str) -> str:
    logger.info(f"Starting Replicate image generation with {model} for prompt: {prompt[:100]}...")
    interval_s = REPLICATE_POLL_INTERVAL_MS / 1000.0
    max_attempts = max(1, math.ceil(REPLICATE_POLL_TIMEOUT_S / interval_s))
    async with _async_client() as client:
        pred_id = await _create(client, model, {"prompt": prompt, "num_outputs": 1, "aspect_ratio": "16:9"})
        return await _wait(client, pred_id, interval_s, max_attempts)

async def create_and_wait_video(prompt: str, model: str = VIDEO_MODEL) -> str:
    logger.info(f"Starting Replicate video generation with {model} for prompt: {prompt[:100]}...")
    async with _async_client() as client:
        pred_id = await _create(client, model, {"prompt": prompt})
        return await _wait(client, pred_id, VIDEO_POLL_INTERVAL_S, VIDEO_POLL_MAX_ATTEMPTS)

async def fetch_bytes(url: str):
    """Download a generated asset; returns (content, content_type)."""
    async with _async_client(timeout=120) as client:
        r = await client.get(url, follow_redirects=True)
        r.raise_for_status()
        return r.content, r.headers.get("content-type", "")
