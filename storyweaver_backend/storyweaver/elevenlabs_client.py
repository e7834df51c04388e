import os, httpx, asyncio, logging
from typing import Dict, Optional
from .models import Language
from .settings import ELEVENLABS_MODEL_ID

logger = logging.getLogger(__name__)

# Fixed narration voice set: id -> (display name, ElevenLabs voice id)
VOICES: Dict[str, Dict[str, str]] = {
    "rachel": {"name": "Rachel (Calm)", "voice_id": "21m00Tcm4TlvDq8ikWAM"},
    "domi": {"name": "Domi (Playful)", "voice_id": "AZnzlk1XvdvUeBnXmlld"},
    "bella": {"name": "Bella (Soft)", "voice_id": "EXAVITQu4vr4xnSDxMaL"},
    "antoni": {"name": "Antoni (Warm)", "voice_id": "ErXwobaYiN019PkySvjV"},
    "josh": {"name": "Josh (Deep)", "voice_id": "TxGEqnHWrfWFTfGW9XjX"},
    "adam": {"name": "Adam (Formal)", "voice_id": "pNInz6obpgDQGcFmaJgB"},
}

DEFAULT_VOICE_BY_LANGUAGE = {
    Language.ENGLISH: "rachel",
    Language.HINDI: "domi",
    Language.SPANISH: "antoni",
}

# Swapped for an httpx.MockTransport in tests
_transport: Optional[httpx.AsyncBaseTransport] = None

def resolve_voice(language: Language, voice: Optional[str] = None) -> str:
    if voice in VOICES:
        return voice
    if voice:
        logger.warning(f"Unknown voice '{voice}', using the {language.value} default")
    return DEFAULT_VOICE_BY_LANGUAGE[language]

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

async def _synthesize(text: str, voice_id: str, max_retries: int) -> bytes:
    payload = {
        "text": text,
        "model_id": ELEVENLABS_MODEL_ID,
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        "optimize_streaming_latency": 2,
        "output_format": "mp3_22050_32"
    }
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60, transport=_transport) as client:
                r = await client.post(url, headers=_headers(), json=payload)
                r.raise_for_status()
                return r.content
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 and attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(wait_time)
                continue
            raise
    raise RuntimeError("ElevenLabs retries exhausted")

async def tts_to_bytes(text: str, language: Language = Language.ENGLISH, voice: Optional[str] = None,
                       max_retries: int = 3) -> Optional[bytes]:
    """Synthesize narration audio; returns None when synthesis is unavailable."""
    if not text.strip():
        return None
    voice_key = resolve_voice(language, voice)
    try:
        audio = await _synthesize(text, VOICES[voice_key]["voice_id"], max_retries)
    except Exception as e:
        logger.error(f"ElevenLabs synthesis failed with voice {voice_key}: {e}")
        return None
    return audio or None
