import asyncio, logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .generation import Composer, build_generation_graph, run_generation
from .llm import compose_story, simplify_text
from .media import MediaPipeline
from .models import EmotionSample, Language, Scene, SessionProgress, Story
from .narration import NarrationPlayer
from .settings import SIMPLIFY_MIN_CHARS, STORY_READER_AGE
from .story_cache import LocalStoryCache

logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "Oops! Creating this story was a bit too tricky. Please try a different topic."
STORY_NOT_FOUND_MESSAGE = "That saved story is no longer available."


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    PRESENTING = "presenting"
    SIMPLIFYING = "simplifying"
    QUIZ = "quiz"


class SessionOrchestrator:
    """Drives one storytelling session: generation, scene navigation, media, simplification and quiz.

    All mutation goes through these methods on a single event loop. Background
    work (media acquisition, simplification) runs as tasks tracked in
    `self._tasks`; results are applied by story and scene identity, so a
    result for a story that has since been replaced is dropped.
    """

    def __init__(
        self,
        cache: LocalStoryCache,
        media: MediaPipeline,
        narration: NarrationPlayer,
        compose: Composer = compose_story,
        simplify: Callable[[str, Language], Awaitable[str]] = simplify_text,
        language: Language = Language.ENGLISH,
        age: int = STORY_READER_AGE,
        progress: Optional[SessionProgress] = None,
        online: bool = True,
    ):
        self.cache = cache
        self.media = media
        self.narration = narration
        self.simplify = simplify
        self.language = language
        self.age = age
        self.progress = progress or SessionProgress()
        self.online = online

        self.story: Optional[Story] = None
        self.scene_index = 0
        self.error: Optional[str] = None
        self.quiz_answers: Dict[int, bool] = {}
        self.media_cache: Dict[str, str] = {}
        self.last_emotion = EmotionSample()

        self._mode = SessionState.IDLE
        self._generation = 0
        self._media_inflight: Set[str] = set()
        self._simplifying: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self._graph = build_generation_graph(compose, cache.save)

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._mode is SessionState.PRESENTING and self._simplifying is not None:
            return SessionState.SIMPLIFYING
        return self._mode

    @property
    def current_scene(self) -> Optional[Scene]:
        if self.story is None or self._mode is not SessionState.PRESENTING:
            return None
        return self.story.scenes[self.scene_index]

    @property
    def simplification_pending(self) -> bool:
        return self._simplifying is not None

    def is_sampling_active(self) -> bool:
        return self.online and self._mode is SessionState.PRESENTING

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for all background work, including work started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- generation ----------------------------------------------------------

    def _begin(self, story: Story) -> None:
        self.story = story
        self.language = story.language
        self.scene_index = 0
        self.error = None
        self.quiz_answers = {}
        self.media_cache = {s.id: s.media_url for s in story.scenes if s.media_url}
        self._simplifying = None
        self._mode = SessionState.PRESENTING
        self._enter_scene()

    def _reset(self) -> None:
        if self.narration.playing:
            self.narration.stop()
        self.story = None
        self.scene_index = 0
        self.quiz_answers = {}
        self.media_cache = {}
        self._simplifying = None

    async def generate(self, prompt: str) -> Optional[Story]:
        topic = (prompt or "").strip()
        if not topic:
            return None
        self._reset()
        self.error = None
        self._mode = SessionState.GENERATING
        self._generation += 1
        generation = self._generation

        try:
            story = await run_generation(self._graph, topic, self.language, self.age)
        except Exception as e:
            logger.error(f"Story generation failed: {e}")
            story = None

        if generation != self._generation:
            logger.info("Discarding story from a superseded generation request")
            return None
        if story is None:
            self._mode = SessionState.IDLE
            self.error = GENERATION_FAILED_MESSAGE
            return None
        self._begin(story)
        return story

    async def saved_stories(self) -> List[Story]:
        return await self.cache.list()

    async def resume(self, story_id: str) -> Optional[Story]:
        """Reopen a cached story, e.g. from the offline library."""
        story = await self.cache.get(story_id)
        if story is None or not story.scenes:
            self.error = STORY_NOT_FOUND_MESSAGE
            return None
        self._reset()
        self._generation += 1
        self._begin(story)
        return story

    # -- navigation ----------------------------------------------------------

    def _enter_scene(self) -> None:
        scene = self.current_scene
        if scene is not None:
            self.request_media(scene)

    def next_scene(self) -> SessionState:
        if self._mode is SessionState.PRESENTING:
            if self.scene_index < len(self.story.scenes) - 1:
                self.scene_index += 1
                self._enter_scene()
            else:
                self._mode = SessionState.QUIZ
        return self.state

    def previous_scene(self) -> SessionState:
        if self._mode is SessionState.PRESENTING and self.scene_index > 0:
            self.scene_index -= 1
            self._enter_scene()
        elif self._mode is SessionState.QUIZ:
            self._mode = SessionState.PRESENTING
            self.scene_index = len(self.story.scenes) - 1
            self._enter_scene()
        return self.state

    def set_online(self, online: bool) -> None:
        changed = online != self.online
        self.online = online
        if changed:
            logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
            if online:
                self._enter_scene()

    # -- media ---------------------------------------------------------------

    def request_media(self, scene: Scene) -> Optional[asyncio.Task]:
        """Start acquisition for a scene unless it is resolved, in flight, or offline."""
        if scene.id in self.media_cache or scene.id in self._media_inflight:
            return None
        if scene.media_url:
            self.media_cache[scene.id] = scene.media_url
            return None
        if not self.online:
            return None
        self._media_inflight.add(scene.id)
        return self._spawn(self._acquire_media(self.story, scene))

    async def _acquire_media(self, story: Story, scene: Scene) -> None:
        try:
            asset = await self.media.acquire_for_scene(scene)
        finally:
            self._media_inflight.discard(scene.id)
        if asset is None:
            logger.warning(f"Media unavailable for scene {scene.id}")
            return
        scene.media_url = asset.data_url
        # a resumed copy of the same story holds its own Scene objects
        current = self.story.find_scene(scene.id) if self.story and self.story.id == story.id else None
        if current is not None:
            current.media_url = asset.data_url
            self.media_cache[scene.id] = asset.data_url
        await self.cache.patch_scene_media(story.id, scene.id, asset.data_url)

    # -- adaptation ----------------------------------------------------------

    async def on_emotion(self, sample: EmotionSample) -> bool:
        """Record a sample; returns True if it started a simplification of the current scene."""
        self.last_emotion = sample
        if not sample.needs_simplification or self._simplifying is not None:
            return False
        scene = self.current_scene
        if scene is None or len(scene.text) <= SIMPLIFY_MIN_CHARS:
            return False
        self._simplifying = scene.id
        logger.info(f"Learner looks confused, simplifying scene {scene.id}")
        self._spawn(self._simplify_scene(self.story, scene.id, scene.text))
        return True

    async def _simplify_scene(self, story: Story, scene_id: str, text: str) -> None:
        try:
            simplified = await self.simplify(text, story.language)
        finally:
            if story is self.story:
                self._simplifying = None
        if story is not self.story:
            return
        scene = story.find_scene(scene_id)
        if scene is not None and simplified:
            scene.text = simplified
        self._enter_scene()

    # -- narration -----------------------------------------------------------

    async def play_narration(self, voice: Optional[str] = None) -> bool:
        scene = self.current_scene
        if scene is None:
            return False
        return await self.narration.toggle(scene.text, self.language, voice, online=self.online)

    # -- quiz ----------------------------------------------------------------

    def answer_quiz(self, question_index: int, option_index: int) -> Optional[bool]:
        """Lock in an answer; returns correctness, or None if the answer was ignored."""
        if self._mode is not SessionState.QUIZ or question_index in self.quiz_answers:
            return None
        if not 0 <= question_index < len(self.story.quiz):
            return None
        options = self.story.quiz[question_index].options
        if not 0 <= option_index < len(options):
            return None
        correct = options[option_index].is_correct
        self.quiz_answers[question_index] = correct
        self.progress.record_quiz_answer(correct, self.last_emotion.emotion)
        return correct

    def finish(self) -> bool:
        if self._mode is not SessionState.QUIZ:
            return False
        quiz = self.story.quiz
        perfect = bool(quiz) and len(self.quiz_answers) == len(quiz) and all(self.quiz_answers.values())
        self.progress.record_story_completed(f"{self.story.title} Star" if perfect else None)
        self._reset()
        self._mode = SessionState.IDLE
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "scene_index": self.scene_index,
            "error": self.error,
            "online": self.online,
            "narrating": self.narration.playing,
            "quiz_answers": self.quiz_answers,
            "story": self.story.model_dump(mode="json", by_alias=True) if self.story else None,
        }
