from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS
from .affect import AffectSampler, PushedFrameSource
from .elevenlabs_client import VOICES
from .kv_storage import default_store
from .media import MediaPipeline
from .models import Language
from .narration import NarrationPlayer
from .orchestrator import SessionOrchestrator
from .story_cache import LocalStoryCache

logger = logging.getLogger(__name__)


class BrowserAudioSink:
    """Keeps the latest narration audio for the browser to fetch and play."""

    def __init__(self):
        self.audio: Optional[bytes] = None

    def play(self, audio: bytes) -> None:
        self.audio = audio

    def stop(self) -> None:
        self.audio = None


class BrowserSpeechRelay:
    """Offline narration: tells the browser to use its own speech synthesis."""

    def __init__(self):
        self.utterance: Optional[dict] = None

    def speak(self, text: str, locale: str) -> None:
        self.utterance = {"text": text, "lang": locale}

    def stop(self) -> None:
        self.utterance = None


class GenerateBody(BaseModel):
    prompt: str
    language: Optional[Language] = None

class AnswerBody(BaseModel):
    question_index: int
    option_index: int

class OnlineBody(BaseModel):
    online: bool

class NarrateBody(BaseModel):
    voice: Optional[str] = None


def create_session() -> SessionOrchestrator:
    narration = NarrationPlayer(BrowserAudioSink(), BrowserSpeechRelay())
    return SessionOrchestrator(LocalStoryCache(default_store()), MediaPipeline(), narration)


def create_app(session: Optional[SessionOrchestrator] = None,
               frames: Optional[PushedFrameSource] = None) -> FastAPI:
    session = session or create_session()
    frames = frames or PushedFrameSource()
    sampler = AffectSampler(frames, session.is_sampling_active, session.on_emotion)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        sampler.start()
        try:
            yield
        finally:
            sampler.stop()

    app = FastAPI(title="StoryWeaver Backend", lifespan=lifespan)
    app.state.session = session
    app.state.frames = frames
    app.state.sampler = sampler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    def _snapshot():
        snap = session.snapshot()
        snap["offline_utterance"] = getattr(session.narration.offline_speech, "utterance", None)
        return snap

    @app.get("/health")
    def health():
        keys_ok = has_all_keys()
        logger.info(f"Health check: API keys present = {keys_ok}")
        return {"ok": True, "has_keys": keys_ok}

    @app.get("/v1/session")
    def get_session():
        return _snapshot()

    @app.post("/v1/session:generate")
    async def generate(body: GenerateBody):
        if body.language is not None:
            session.language = body.language
        story = await session.generate(body.prompt)
        if story is None and session.error:
            logger.warning(f"Generation failed for prompt: {body.prompt[:50]}")
        return _snapshot()

    @app.post("/v1/session:next")
    async def next_scene():
        session.next_scene()
        return _snapshot()

    @app.post("/v1/session:previous")
    async def previous_scene():
        session.previous_scene()
        return _snapshot()

    @app.post("/v1/session:answer")
    async def answer(body: AnswerBody):
        correct = session.answer_quiz(body.question_index, body.option_index)
        return {"accepted": correct is not None, "correct": correct, "progress": session.progress.model_dump(mode="json")}

    @app.post("/v1/session:finish")
    async def finish():
        if not session.finish():
            raise HTTPException(409, "story is not in quiz mode")
        return _snapshot()

    @app.post("/v1/session:online")
    async def set_online(body: OnlineBody):
        session.set_online(body.online)
        return _snapshot()

    @app.post("/v1/session:narrate")
    async def narrate(body: NarrateBody):
        started = await session.play_narration(body.voice)
        return {"playing": session.narration.playing, "started": started}

    @app.post("/v1/session:narration-ended")
    async def narration_ended():
        session.narration.finished()
        return {"playing": session.narration.playing}

    @app.get("/v1/session/narration")
    def narration_audio():
        audio = getattr(session.narration.sink, "audio", None)
        if not audio:
            raise HTTPException(404, "no narration audio")
        return Response(content=audio, media_type="audio/mpeg")

    @app.post("/v1/session/frames")
    async def push_frame(request: Request):
        data = await request.body()
        try:
            frames.push(data)
        except Exception as e:
            raise HTTPException(400, f"could not decode frame: {e}")
        return {"ok": True, "sampling": session.is_sampling_active()}

    @app.get("/v1/stories")
    async def list_stories():
        return [
            {"id": s.id, "title": s.title, "timestamp": s.timestamp, "language": s.language.value}
            for s in await session.saved_stories()
        ]

    @app.post("/v1/stories/{story_id}:resume")
    async def resume(story_id: str):
        if await session.resume(story_id) is None:
            raise HTTPException(404, "story not found")
        return _snapshot()

    @app.get("/v1/progress")
    def progress():
        return session.progress.model_dump(mode="json")

    @app.get("/v1/voices")
    def voices():
        return [{"id": k, "name": v["name"]} for k, v in VOICES.items()]

    return app


app = create_app()
