from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Self

from core.speech.selector import EngineSelector
from models.config_models import Config
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from collections.abc import Awaitable

    from core.speech.interface import SpeechEngine
    from models.voice_models import AudioResourceHandle, VoiceCategory

__all__: list[str] = ["SpeechService"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)


class SpeechService:
    """Single entry point for speech synthesis and playback.

    The platform engine is selected and constructed on first use, exactly once, even when
    the first calls arrive simultaneously from several threads or tasks.
    Errors raised by the engine reach the caller unchanged.

    Usage:
        async with SpeechService(config) as service:
            handle = await service.synthesize_speech("你好", VoiceCategory.FEMALE)
            await service.play_audio(handle)
    """

    def __init__(self, config: Config | None = None, *, selector: EngineSelector | None = None) -> None:
        self.config: Config = config if config is not None else Config()
        self._selector: EngineSelector = selector if selector is not None else EngineSelector(self.config)
        self._engine: SpeechEngine | None = None
        self._lock: threading.Lock = threading.Lock()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        _ = exc_type, exc_val, exc_tb
        await self.close()

    def _get_engine(self) -> SpeechEngine:
        engine: SpeechEngine | None = self._engine
        if engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._selector.select()
                engine = self._engine
        return engine

    async def synthesize_speech(
        self, text: str, voice: VoiceCategory | str, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        """Synthesize text with a voice category. force_refresh bypasses the cache.

        Raises:
            SynthesisError: The classified failure from the engine.
            EngineSelectionError: No engine is available for this platform.
        """
        return await self._get_engine().synthesize_speech(text, voice, force_refresh=force_refresh)

    def play_audio(self, handle: AudioResourceHandle) -> Awaitable[bool]:
        """Play a synthesized file; the awaitable resolves True only on complete playback."""
        return self._get_engine().play_audio(handle)

    def stop_audio(self) -> None:
        """Stop playback. Does nothing if no engine has been created yet."""
        engine: SpeechEngine | None = self._engine
        if engine is not None:
            engine.stop_audio()

    async def close(self) -> None:
        engine: SpeechEngine | None = self._engine
        if engine is not None:
            await engine.close()
            logger.info("Speech service closed")
