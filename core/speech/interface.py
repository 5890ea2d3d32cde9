from __future__ import annotations

import asyncio
import contextlib
import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar, Final

from core.speech.audio_playback_manager import AudioPlaybackManager
from core.speech.cache import SpeechCacheManager
from core.speech.errors import (
    InvalidParametersError,
    PlaybackFailureError,
    SynthesisError,
    SynthesisFailedError,
    SynthesisTimeoutError,
    classify_exception,
)
from models.voice_models import DEFAULT_PROVIDER, AudioResourceHandle, VoiceCatalog, VoiceCategory
from utils.file_utils import FileUtils
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from collections.abc import Awaitable, Sequence

    from models.config_models import Config
    from models.voice_models import ProviderName, ProviderVoiceId


__all__: list[str] = ["SpeechEngine"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

WINDOWS: Final[bool] = os.name == "nt"
KILL_TIMEOUT: Final[float] = 3.0  # Timeout for process termination


class SpeechEngine(ABC):
    """Base class for speech engines.

    An engine turns text plus a voice category into a WAV file and plays such files on the
    default output device. Every failure of synthesize_speech() is raised as one SynthesisError.

    Concrete engines register themselves for a platform with a class keyword:

        class MacOSSpeechEngine(AzureSpeechEngine, platform="darwin"): ...

    Attributes:
        _registered_engines (dict[str, type[SpeechEngine]]): Registered engine classes by platform name
        requires_audio_session (bool): True if the engine overrides the audio session hooks
        provider (ProviderName): Voice catalog used to resolve voice categories
    """

    _registered_engines: ClassVar[dict[str, type[SpeechEngine]]] = {}
    _platform: ClassVar[str | None] = None

    requires_audio_session: ClassVar[bool] = False
    provider: ClassVar[ProviderName] = DEFAULT_PROVIDER

    def __init__(self, config: Config) -> None:
        self.config: Config = config
        self.cache: SpeechCacheManager = SpeechCacheManager(
            FileUtils.resolve_path(config.SPEECH.CACHE_DIR),
            max_age_days=config.SPEECH.CACHE_MAX_AGE_DAYS,
            max_size_mb=config.SPEECH.CACHE_MAX_SIZE_MB,
        )
        self.playback: AudioPlaybackManager = AudioPlaybackManager(limit_time=config.SPEECH.PLAYBACK_LIMIT_TIME)
        self._initialized: bool = False
        logger.debug("%s instance created", self.__class__.__name__)

    def __init_subclass__(cls, *, platform: str | None = None, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        # Intermediate base classes declare no platform and stay unregistered
        if platform is not None:
            cls._platform = platform
            cls.register_engine(cls)

    @classmethod
    def fetch_platform_name(cls) -> str:
        """Get the platform name the engine is registered for."""
        if cls._platform is None:
            msg: str = f"{cls.__name__} is not registered for a platform"
            raise NotImplementedError(msg)
        return cls._platform

    @classmethod
    def get_registered(cls) -> dict[str, type[SpeechEngine]]:
        """Get all registered engine classes"""
        return cls._registered_engines

    @classmethod
    def register_engine(cls, engine_cls: type[SpeechEngine]) -> None:
        """Register an engine class under its platform name"""
        if not issubclass(engine_cls, SpeechEngine):
            msg = "Must be a subclass of SpeechEngine"
            raise TypeError(msg)
        name: str = engine_cls.fetch_platform_name()
        SpeechEngine._registered_engines[name] = engine_cls
        logger.debug("Registered engine: %s -> %s", name, engine_cls.__name__)

    @classmethod
    def get_engine(cls, name: str) -> type[SpeechEngine]:
        """Retrieve a registered engine class by platform name"""
        try:
            return cls._registered_engines[name]
        except KeyError:
            msg: str = f"No such engine registered: {name}"
            raise ValueError(msg) from None

    async def async_init(self) -> None:
        """Asynchronous initialization (override if necessary)

        Starts the background cache cleanup. Called once before the first synthesis.
        """
        if self._initialized:
            return
        self._initialized = True
        try:
            self.cache.prepare()
        except SynthesisError as err:
            # store() reports the failure again when a file is written
            logger.warning("%s", err)
        self.cache.start_cleanup()
        logger.info("%s initialised", self.__class__.__name__)

    async def close(self) -> None:
        """Stop playback and release engine resources (override if necessary)"""
        self.playback.release_pyaudio()
        await self.cache.close()
        logger.info("%s closed", self.__class__.__name__)

    def setup_audio_session(self) -> None:
        """Prepare the platform audio session. No-op unless the engine overrides it."""

    def deactivate_audio_session(self) -> None:
        """Release the platform audio session. No-op unless the engine overrides it."""

    @staticmethod
    def validate_request(text: object, voice: object) -> tuple[str, VoiceCategory]:
        """Check synthesis preconditions.

        Returns:
            tuple[str, VoiceCategory]: The text and the parsed voice category.
        Raises:
            InvalidParametersError: If the text is empty or blank, or the voice is not a category.
        """
        if not isinstance(text, str) or not text.strip():
            msg = "text must be a non-empty string"
            raise InvalidParametersError(msg)
        try:
            category: VoiceCategory = VoiceCategory.parse(voice)
        except ValueError as err:
            msg: str = f"unsupported voice: {voice!r}"
            raise InvalidParametersError(msg) from err
        return text, category

    def resolve_voice(self, voice: VoiceCategory, provider: ProviderName | None = None) -> ProviderVoiceId:
        return VoiceCatalog.resolve_provider_voice(voice, provider or self.provider)

    async def synthesize_speech(
        self, text: str, voice: VoiceCategory | str, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        """Synthesize text with the given voice.

        Args:
            text (str): Text to speak. Must contain a non-whitespace character.
            voice (VoiceCategory | str): Voice category or its value.
            force_refresh (bool): Synthesize again even if a cached file exists.

        Returns:
            AudioResourceHandle: Reference to the synthesized WAV file.
        Raises:
            SynthesisError: Exactly one classified failure.
        """
        text, category = self.validate_request(text, voice)
        if not self._initialized:
            await self.async_init()
        try:
            handle: AudioResourceHandle = await self.speech_synthesis(text, category, force_refresh=force_refresh)
        except SynthesisError as err:
            logger.error("%s: %s", err.kind, err)
            raise
        except Exception as err:
            classified: SynthesisError = classify_exception(err)
            logger.error("%s: %s", classified.kind, classified)
            raise classified from err
        logger.info("Synthesized %d characters with voice '%s': %s", len(text), category, handle.path.name)
        return handle

    @abstractmethod
    async def speech_synthesis(
        self, text: str, voice: VoiceCategory, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        """Engine-specific synthesis of validated input.

        Args:
            text (str): Validated, non-blank text.
            voice (VoiceCategory): Parsed voice category.
            force_refresh (bool): Skip the cache lookup.

        Raises:
            NotImplementedError: This is a required method and must be overridden
        """
        raise NotImplementedError

    def play_audio(self, handle: AudioResourceHandle) -> Awaitable[bool]:
        """Start playing a synthesized file.

        The request is registered before this method returns, so a stop_audio() that follows it
        always applies. Any playback already running is stopped.

        Args:
            handle (AudioResourceHandle): Handle returned by synthesize_speech().

        Returns:
            Awaitable[bool]: Resolves True only if the audio played to completion.
        """
        if not isinstance(handle, AudioResourceHandle):
            logger.error("%s", PlaybackFailureError(f"not an audio handle: {handle!r}"))
            future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
            future.set_result(False)
            return future
        return self.playback.start(handle.path)

    def stop_audio(self) -> None:
        """Stop the current playback. Idempotent and safe from any thread."""
        self.playback.stop()

    async def run_command(self, args: Sequence[str], *, timeout: float) -> None:
        """Run an external synthesizer and wait for it to exit.

        Args:
            args (Sequence[str]): Program and arguments.
            timeout (float): Seconds to wait for the process.

        Raises:
            SynthesisFailedError: The program is missing, cannot be started or exits with an error.
            SynthesisTimeoutError: The program did not exit in time.
        """
        logger.debug("Executing: %s", " ".join(args))
        try:
            process: asyncio.subprocess.Process = await asyncio.create_subprocess_exec(
                *args, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as err:
            msg: str = f"Executable file not found: '{args[0]}'"
            raise SynthesisFailedError(msg) from err
        except OSError as err:
            msg = f"Failed to execute '{args[0]}': {err}"
            raise SynthesisFailedError(msg) from err

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as err:
            await self._kill(process)
            msg = f"'{args[0]}' did not finish within {timeout}s"
            raise SynthesisTimeoutError(msg) from err

        if process.returncode != 0:
            reason: str = (stderr or b"").decode("utf-8", errors="replace").strip()
            msg = f"'{args[0]}' exited with status {process.returncode}: {reason}"
            raise SynthesisFailedError(msg)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate a process, force killing it if it does not exit in time."""
        with contextlib.suppress(ProcessLookupError):
            try:
                logger.info("Terminating process %s", process.pid)
                process.terminate()
            except PermissionError as exc:
                logger.error("Failed to terminate process %s: %s", process.pid, exc)
                return

        if await self._wait_for_exit(process, KILL_TIMEOUT) or WINDOWS:
            # On Windows terminate() and kill() are the same operation
            return

        with contextlib.suppress(ProcessLookupError):
            try:
                logger.warning("Termination timed out; force killing process %s", process.pid)
                process.kill()
            except PermissionError as exc:
                logger.error("Failed to force kill process %s: %s", process.pid, exc)
                return

        if not await self._wait_for_exit(process, KILL_TIMEOUT):
            logger.error("Force kill also timed out for process %s", process.pid)

    @staticmethod
    async def _wait_for_exit(process: asyncio.subprocess.Process, wait_timeout: float) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=wait_timeout)
        except TimeoutError:
            return False
        else:
            return True
