import json, re, logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?|\n?```")

def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    data = json.loads(text)
    return data if isinstance(data, dict) else None

def parse_json_response(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from model output.

    Code fences are stripped first; if that still does not parse, the substring
    between the first '{' and the last '}' is tried. Returns None when neither
    yields an object, so callers treat it as a failed generation.
    """
    if not text:
        return None
    clean = _FENCE_RE.sub("", text).strip()
    try:
        return _loads_object(clean)
    except json.JSONDecodeError:
        logger.info(f"Response is not bare JSON, trying brace recovery: {text[:200]!r}")

    first, last = text.find("{"), text.rfind("}")
    if first == -1 or last <= first:
        logger.warning(f"No JSON object found in response: {text[:200]!r}")
        return None
    try:
        return _loads_object(text[first:last + 1])
    except json.JSONDecodeError as e:
        logger.error(f"Fallback JSON parsing failed: {e}")
        return None
