import os, base64, logging
from typing import Optional

from .fallback import attempt_chain
from .models import Emotion, EmotionSample, Language
from .parsing import parse_json_response
from .prompts import SYSTEM_PROMPT, USER_PROMPT_TEMPLATE, STORY_SCHEMA, SIMPLIFY_PROMPT_TEMPLATE, EMOTION_PROMPT
from .settings import (
    STORY_MODEL, STORY_REASONING_EFFORT, STORY_FALLBACK_MODEL, SIMPLIFY_MODEL, VISION_MODEL,
    STORY_SCENE_COUNT, STORY_QUIZ_COUNT, STORY_NOTES_COUNT, CONFUSION_THRESHOLD,
)

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client

def build_system_prompt(topic: str, language: Language, age: int) -> str:
    return SYSTEM_PROMPT.format(
        topic=topic,
        language=language.prompt_name,
        scene_count=STORY_SCENE_COUNT,
        age=age,
        quiz_count=STORY_QUIZ_COUNT,
        notes_count=STORY_NOTES_COUNT,
        schema=STORY_SCHEMA,
    )

async def _complete(model: str, messages: list, json_output: bool = False, reasoning_effort: Optional[str] = None) -> Optional[str]:
    kwargs = {"model": model, "messages": messages}
    if json_output:
        kwargs["response_format"] = {"type": "json_object"}
    if reasoning_effort:
        kwargs["reasoning_effort"] = reasoning_effort
    resp = await _get_client().chat.completions.create(**kwargs)
    return resp.choices[0].message.content or None

async def compose_story(topic: str, language: Language, age: int) -> Optional[str]:
    """Ask the text model for a full story; returns the raw response text or None.

    The higher-capability model runs with the configured reasoning budget; if it
    raises, the faster model is tried once.
    """
    logger.info(f"Calling OpenAI API to compose story for topic: {topic[:80]}")
    messages = [
        {"role": "system", "content": build_system_prompt(topic, language, age)},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(topic=topic)},
    ]
    return await attempt_chain([
        (STORY_MODEL, lambda: _complete(STORY_MODEL, messages, json_output=True,
                                        reasoning_effort=STORY_REASONING_EFFORT or None)),
        (STORY_FALLBACK_MODEL, lambda: _complete(STORY_FALLBACK_MODEL, messages, json_output=True)),
    ], label="story composition")

async def simplify_text(text: str, language: Language) -> str:
    """Rewrite text at a lower reading level; the original text is returned on failure."""
    prompt = SIMPLIFY_PROMPT_TEMPLATE.format(language=language.value, text=text)
    try:
        simplified = await _complete(SIMPLIFY_MODEL, [{"role": "user", "content": prompt}])
    except Exception as e:
        logger.error(f"Simplification call failed: {e}")
        return text
    return simplified.strip() if simplified else text

def _parse_emotion(value) -> Emotion:
    try:
        return Emotion(str(value).strip().lower())
    except ValueError:
        return Emotion.NEUTRAL

async def classify_emotion(jpeg_bytes: bytes) -> EmotionSample:
    """Classify the learner's emotion from one JPEG frame.

    Any failure yields a neutral sample with zero confidence.
    """
    b64 = base64.b64encode(jpeg_bytes).decode("ascii")
    messages = [{
        "role": "user",
        "content": [
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{b64}"}},
            {"type": "text", "text": EMOTION_PROMPT},
        ],
    }]
    try:
        raw = await _complete(VISION_MODEL, messages, json_output=True)
    except Exception as e:
        logger.error(f"Emotion classification failed: {e}")
        return EmotionSample()
    data = parse_json_response(raw) or {}
    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    return EmotionSample.evaluate(_parse_emotion(data.get("emotion")), confidence, CONFUSION_THRESHOLD)
