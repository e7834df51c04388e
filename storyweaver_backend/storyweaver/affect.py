import io, asyncio, logging
from typing import Awaitable, Callable, Optional, Protocol

from PIL import Image

from .llm import classify_emotion
from .models import EmotionSample
from .settings import AFFECT_SAMPLE_INTERVAL_S, AFFECT_FRAME_WIDTH, AFFECT_FRAME_HEIGHT, AFFECT_JPEG_QUALITY

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def read(self) -> Optional[Image.Image]: ...


class PushedFrameSource:
    """Holds the latest webcam frame pushed by the browser."""

    def __init__(self):
        self._frame: Optional[Image.Image] = None

    def push(self, data: bytes) -> None:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            self._frame = img.copy()

    def clear(self) -> None:
        self._frame = None

    def read(self) -> Optional[Image.Image]:
        return self._frame


def encode_frame(frame: Image.Image, width: int = AFFECT_FRAME_WIDTH, height: int = AFFECT_FRAME_HEIGHT,
                 quality: int = AFFECT_JPEG_QUALITY) -> bytes:
    img = frame.convert("RGB").resize((width, height))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


class AffectSampler:
    """Periodically classifies the learner's emotion from the frame source.

    `is_active` gates every sample: while it is false no frame is read and no
    classification request is made.
    """

    def __init__(
        self,
        source: FrameSource,
        is_active: Callable[[], bool],
        on_sample: Callable[[EmotionSample], Awaitable[None]],
        classify: Callable[[bytes], Awaitable[EmotionSample]] = classify_emotion,
        interval_s: float = AFFECT_SAMPLE_INTERVAL_S,
    ):
        self.source = source
        self.is_active = is_active
        self.on_sample = on_sample
        self.classify = classify
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    async def sample_once(self) -> Optional[EmotionSample]:
        if not self.is_active():
            return None
        try:
            frame = self.source.read()
            if frame is None:
                return None
            jpeg = encode_frame(frame)
        except Exception as e:
            logger.warning(f"Frame capture failed: {e}")
            return None

        sample = await self.classify(jpeg)
        # The session may have left presentation (or gone offline) while classifying
        if not self.is_active():
            return None
        logger.info(f"Emotion sample: {sample.emotion.value} ({sample.confidence:.2f})")
        await self.on_sample(sample)
        return sample

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.sample_once()
            except Exception as e:
                logger.error(f"Affect sampling failed: {e}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self.run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
