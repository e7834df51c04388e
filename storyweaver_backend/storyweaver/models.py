import time
import uuid
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


class Language(str, Enum):
    ENGLISH = "English"
    HINDI = "Hindi"
    SPANISH = "Spanish"

    @property
    def locale(self) -> str:
        return {"Hindi": "hi-IN", "Spanish": "es-ES"}.get(self.value, "en-US")

    @property
    def prompt_name(self) -> str:
        # Hindi stories read better for students as conversational Hinglish
        if self is Language.HINDI:
            return "Hinglish (Conversational mix of Hindi and English, easy for Indian students)"
        return self.value


class Emotion(str, Enum):
    CONFUSED = "confused"
    HAPPY = "happy"
    BORED = "bored"
    NEUTRAL = "neutral"
    SURPRISED = "surprised"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class WireModel(BaseModel):
    """Base for models shared with the model output and the persisted payload (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuizOption(WireModel):
    text: str
    is_correct: bool = False


class QuizItem(WireModel):
    question: str
    options: List[QuizOption] = Field(default_factory=list)
    feedback: str = ""


class Scene(WireModel):
    id: str = Field(default_factory=new_id)
    text: str
    image_prompt: str = ""
    media_url: Optional[str] = None
    media_type: MediaKind = MediaKind.IMAGE


class Story(WireModel):
    id: str = Field(default_factory=new_id)
    title: str
    scenes: List[Scene] = Field(default_factory=list)
    quiz: List[QuizItem] = Field(default_factory=list)
    notes: Optional[List[str]] = None
    timestamp: int = Field(default_factory=now_ms)
    language: Language = Language.ENGLISH

    def find_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None


class MediaAsset(BaseModel):
    """Acquired media in its storage-safe form: a self-contained data URL tagged with its kind."""
    kind: MediaKind
    data_url: str


class EmotionSample(BaseModel):
    emotion: Emotion = Emotion.NEUTRAL
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_simplification: bool = False

    @classmethod
    def evaluate(cls, emotion: Emotion, confidence: float, threshold: float) -> "EmotionSample":
        confidence = min(max(confidence, 0.0), 1.0)
        return cls(
            emotion=emotion,
            confidence=confidence,
            needs_simplification=emotion is Emotion.CONFUSED and confidence > threshold,
        )


# Engagement estimate per observed emotion, 0-100
ENGAGEMENT_BY_EMOTION = {
    Emotion.HAPPY: 95,
    Emotion.SURPRISED: 90,
    Emotion.NEUTRAL: 75,
    Emotion.CONFUSED: 55,
    Emotion.BORED: 40,
}

CORRECT_ANSWER_POINTS = 50
ATTEMPT_POINTS = 10


class SessionProgress(BaseModel):
    badges: Set[str] = Field(default_factory=set)
    stories_completed: int = 0
    quizzes_passed: int = 0
    quizzes_attempted: int = 0
    total_points: int = 0
    literacy_score: List[int] = Field(default_factory=list)
    engagement_score: List[int] = Field(default_factory=list)

    def record_quiz_answer(self, correct: bool, emotion: Emotion = Emotion.NEUTRAL) -> None:
        self.quizzes_attempted += 1
        if correct:
            self.quizzes_passed += 1
            self.total_points += CORRECT_ANSWER_POINTS
        else:
            self.total_points += ATTEMPT_POINTS
        self.literacy_score.append(round(100 * self.quizzes_passed / self.quizzes_attempted))
        self.engagement_score.append(ENGAGEMENT_BY_EMOTION[emotion])

    def record_story_completed(self, badge: Optional[str] = None) -> None:
        self.stories_completed += 1
        if badge:
            self.badges.add(badge)
