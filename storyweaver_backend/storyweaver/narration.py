import logging
from typing import Awaitable, Callable, Optional, Protocol

from .elevenlabs_client import tts_to_bytes
from .models import Language

logger = logging.getLogger(__name__)


class AudioSink(Protocol):
    def play(self, audio: bytes) -> None: ...
    def stop(self) -> None: ...


class OfflineSpeech(Protocol):
    def speak(self, text: str, locale: str) -> None: ...
    def stop(self) -> None: ...


Synthesizer = Callable[[str, Language, Optional[str]], Awaitable[Optional[bytes]]]


class NarrationPlayer:
    """One narration stream per session; invoking it while playing stops playback."""

    def __init__(self, sink: AudioSink, offline_speech: Optional[OfflineSpeech] = None,
                 synthesize: Synthesizer = tts_to_bytes):
        self.sink = sink
        self.offline_speech = offline_speech
        self.synthesize = synthesize
        self.playing = False
        self._stream = 0

    def stop(self) -> None:
        self._stream += 1
        self.playing = False
        self.sink.stop()
        if self.offline_speech is not None:
            self.offline_speech.stop()

    def finished(self) -> None:
        """Called by the output when a stream ends on its own."""
        self.playing = False

    async def toggle(self, text: str, language: Language, voice: Optional[str] = None, online: bool = True) -> bool:
        """Returns True when a new stream was started."""
        if self.playing:
            logger.info("Narration playing, stopping")
            self.stop()
            return False

        if not online:
            if self.offline_speech is None:
                logger.warning("Offline and no local speech output available, narration skipped")
                return False
            logger.info(f"Offline, using local speech for narration ({language.locale})")
            self.offline_speech.speak(text, language.locale)
            self.playing = True
            return True

        # Counts as playing while synthesis is in flight so a second toggle stops it
        self.playing = True
        stream = self._stream
        audio = await self.synthesize(text, language, voice)
        if stream != self._stream:
            logger.info("Narration stopped before audio arrived, discarding")
            return False
        if not audio:
            logger.warning("Narration audio unavailable")
            self.playing = False
            return False
        try:
            self.sink.play(audio)
        except Exception as e:
            logger.error(f"Audio playback failed: {e}")
            self.playing = False
            return False
        return True
