import asyncio
import io
import json
import os
import sys

import pytest
from PIL import Image

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "storyweaver_backend"))

from storyweaver.kv_storage import MemoryKVStore
from storyweaver.media import MediaPipeline
from storyweaver.narration import NarrationPlayer
from storyweaver.orchestrator import SessionOrchestrator
from storyweaver.story_cache import LocalStoryCache


MARS_STORY = {
    "title": "Mars Rover Max",
    "scenes": [
        {"text": "Max the little rover rolled off the landing craft onto the dusty red plains of Mars.",
         "imagePrompt": "small rover on red martian plain", "mediaType": "image"},
        {"text": "The sky was butterscotch colored and the air was much too thin for people to breathe.",
         "imagePrompt": "butterscotch martian sky", "mediaType": "image"},
        {"text": "Max drilled into a rock and found tiny layers that showed water once flowed here long ago.",
         "imagePrompt": "rover drilling layered rock", "mediaType": "video"},
        {"text": "A dust storm rolled in, so Max tilted his solar panels and waited patiently for the sun.",
         "imagePrompt": "dust storm approaching rover", "mediaType": "image"},
        {"text": "When the storm cleared, Max sent his discoveries home to the scientists on planet Earth.",
         "imagePrompt": "rover antenna pointing at earth", "mediaType": "image"},
    ],
    "quiz": [
        {"question": "What color is the Martian sky?",
         "options": [{"text": "Butterscotch", "isCorrect": True}, {"text": "Green", "isCorrect": False}],
         "feedback": "Dust in the air makes the sky look butterscotch."},
        {"question": "What did Max find in the rock?",
         "options": [{"text": "Gold", "isCorrect": False}, {"text": "Signs of old water", "isCorrect": True}],
         "feedback": "Layered rock shows that water once flowed."},
        {"question": "How does Max get energy?",
         "options": [{"text": "Solar panels", "isCorrect": True}, {"text": "Gasoline", "isCorrect": False}],
         "feedback": "Max charges with sunlight."},
    ],
    "notes": [
        "Mars is the fourth planet from the sun.",
        "Rovers are robots that explore other planets.",
        "Layered rocks can show where water once flowed.",
        "Dust storms on Mars can cover the whole planet.",
        "Solar panels turn sunlight into electricity.",
    ],
}

MARS_RESPONSE = "Here is your story!\n```json\n" + json.dumps(MARS_STORY) + "\n```"


def png_bytes(size=(64, 48), color=(200, 80, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class SlowStore(MemoryKVStore):
    """Suspends inside every read and write, like a networked store."""

    async def get(self, key):
        await asyncio.sleep(0.01)
        return await super().get(key)

    async def set(self, key, value):
        await asyncio.sleep(0.01)
        await super().set(key, value)


class FakeSink:
    def __init__(self):
        self.played = []
        self.stops = 0

    def play(self, audio: bytes) -> None:
        self.played.append(audio)

    def stop(self) -> None:
        self.stops += 1


class FakeSpeech:
    def __init__(self):
        self.spoken = []
        self.stops = 0

    def speak(self, text: str, locale: str) -> None:
        self.spoken.append((text, locale))

    def stop(self) -> None:
        self.stops += 1


class Recorder:
    """Async callable that records calls and returns (or raises) a preset result."""

    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def __call__(self, *args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def store():
    return MemoryKVStore()


@pytest.fixture
def cache(store):
    return LocalStoryCache(store)


@pytest.fixture
def media_calls():
    return {"image": [], "video": [], "fetch": []}


@pytest.fixture
def pipeline(media_calls):
    async def generate_image(prompt, model):
        media_calls["image"].append((prompt, model))
        return f"https://replicate.delivery/{model}/out.png"

    async def generate_video(prompt, model):
        media_calls["video"].append((prompt, model))
        raise RuntimeError("video not permitted")

    async def fetch(url):
        media_calls["fetch"].append(url)
        return png_bytes(), "image/png"

    return MediaPipeline(generate_image=generate_image, generate_video=generate_video, fetch=fetch,
                         image_model_high="high/model", image_model_low="low/model", video_model="video/model")


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def synthesize():
    return Recorder(result=b"ID3-audio")


@pytest.fixture
def compose():
    return Recorder(result=MARS_RESPONSE)


@pytest.fixture
def simplify():
    return Recorder(result="Max is a robot car on Mars.")


@pytest.fixture
def session(cache, pipeline, sink, speech, synthesize, compose, simplify):
    narration = NarrationPlayer(sink, speech, synthesize=synthesize)
    return SessionOrchestrator(cache, pipeline, narration, compose=compose, simplify=simplify)
