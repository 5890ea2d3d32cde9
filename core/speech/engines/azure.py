"""Azure Cognitive Services text-to-speech over REST.

Requests are SSML documents posted to the regional endpoint; the response body is a RIFF WAV file.
Synthesized audio is cached on disk. Without an API key, or with SPEECH.PREFER_LOCAL set, the
engine uses the platform's local synthesizer provided by subclasses. SPEECH.LOCAL_FALLBACK retries
a failed cloud request with that synthesizer.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from abc import abstractmethod
from io import BytesIO
from typing import TYPE_CHECKING, ClassVar, Final
from xml.sax.saxutils import escape

import numpy as np
import soundfile

from core.speech.errors import (
    ProviderError,
    RateLimitedError,
    ResourceAccessError,
    ResponseParseError,
    SynthesisError,
    SynthesisFailedError,
    SynthesisTimeoutError,
    TransportFailureError,
)
from core.speech.interface import SpeechEngine
from core.version import VERSION
from handlers.async_comm import (
    AsyncCommError,
    AsyncCommInvalidContentTypeError,
    AsyncCommResponseError,
    AsyncCommTimeoutError,
    AsyncHttp,
)
from models.voice_models import AudioResourceHandle
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from pathlib import Path

    from models.config_models import Config
    from models.voice_models import ProviderName, ProviderVoiceId, VoiceCategory

__all__: list[str] = ["API_KEY_ENV", "AzureSpeechEngine"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

API_KEY_ENV: Final[str] = "AZURE_SPEECH_KEY"
ENDPOINT_TEMPLATE: Final[str] = "https://{region}.tts.speech.microsoft.com/cognitiveservices/v1"
USER_AGENT: Final[str] = f"SpeechService/{VERSION}"
# Seconds to wait after a 429 without a Retry-After header
DEFAULT_RETRY_AFTER: Final[float] = 5.0


def _attr(value: str) -> str:
    """Single-quoted, escaped XML attribute value."""
    return "'" + escape(value, {"'": "&apos;"}) + "'"


class AzureSpeechEngine(SpeechEngine):
    """Cloud speech engine backed by the Azure REST API.

    Subclasses bind the engine to a platform and supply the local synthesizer.
    """

    provider: ClassVar[ProviderName] = "azure"
    local_provider: ClassVar[ProviderName]

    def __init__(self, config: Config) -> None:
        super().__init__(config)
        azure = config.AZURE
        self.api_key: str = azure.API_KEY or os.environ.get(API_KEY_ENV, "")
        self.endpoint: str = ENDPOINT_TEMPLATE.format(region=azure.REGION)
        self.language: str = azure.LANGUAGE
        self.output_format: str = azure.OUTPUT_FORMAT
        self.prosody_rate: str = azure.PROSODY_RATE
        self.timeout: float = azure.TIMEOUT
        self.max_retries: int = azure.MAX_RETRIES
        self.retry_delay: float = azure.RETRY_DELAY
        self.local_timeout: float = config.SPEECH.LOCAL_TIMEOUT
        self.local_fallback: bool = config.SPEECH.LOCAL_FALLBACK
        self.prefer_local: bool = config.SPEECH.PREFER_LOCAL
        self.http: AsyncHttp = AsyncHttp(user_agent=USER_AGENT)
        if self.prefer_local:
            logger.info("SPEECH.PREFER_LOCAL is set; using the local synthesizer")
        elif not self.api_key:
            logger.warning("No Azure API key configured; using the local synthesizer")

    @property
    def use_cloud(self) -> bool:
        return bool(self.api_key) and not self.prefer_local

    async def close(self) -> None:
        await self.http.close()
        await super().close()

    def build_ssml(self, text: str, voice_id: ProviderVoiceId) -> str:
        """Build the SSML request document. The text is XML-escaped."""
        return (
            f"<speak version='1.0' xml:lang={_attr(self.language)}>"
            f"<voice name={_attr(voice_id)}>"
            f"<prosody rate={_attr(self.prosody_rate)} pitch='0'>{escape(text)}</prosody>"
            "</voice></speak>"
        )

    def build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/ssml+xml",
            "Ocp-Apim-Subscription-Key": self.api_key,
            "X-Microsoft-OutputFormat": self.output_format,
            "User-Agent": USER_AGENT,
        }

    async def speech_synthesis(
        self, text: str, voice: VoiceCategory, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        if not self.use_cloud:
            return await self.local_synthesis(text, voice, force_refresh=force_refresh)

        try:
            return await self.cloud_synthesis(text, voice, force_refresh=force_refresh)
        except SynthesisError as err:
            if not self.local_fallback:
                raise
            logger.warning("Cloud synthesis failed (%s: %s); trying the local synthesizer", err.kind, err)
        return await self.local_synthesis(text, voice, force_refresh=force_refresh)

    async def cloud_synthesis(
        self, text: str, voice: VoiceCategory, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        """Synthesize with the Azure REST API and store the result in the cache."""
        voice_id: ProviderVoiceId = self.resolve_voice(voice)
        if not force_refresh:
            cached: Path | None = self.cache.lookup(voice_id, text)
            if cached is not None:
                return AudioResourceHandle(path=cached, voice=voice, cached=True)

        data: bytes = await self.request_with_retry(self.build_ssml(text, voice_id))
        await asyncio.to_thread(self.validate_audio, data)
        path: Path = await asyncio.to_thread(self.cache.store, voice_id, text, data)
        return AudioResourceHandle(path=path, voice=voice)

    async def request_with_retry(self, ssml: str) -> bytes:
        """Post the SSML document, retrying transport failures and throttling.

        Transport failures wait RETRY_DELAY * 2**attempt seconds; HTTP 429 waits for Retry-After.

        Raises:
            SynthesisError: The classified failure of the last attempt.
        """
        attempt: int = 0
        while True:
            try:
                return await self.request(ssml)
            except (TransportFailureError, RateLimitedError) as err:
                if attempt >= self.max_retries:
                    raise
                if isinstance(err, RateLimitedError):
                    delay: float = err.retry_after if err.retry_after is not None else DEFAULT_RETRY_AFTER
                else:
                    delay = self.retry_delay * 2**attempt
                attempt += 1
                logger.warning("%s; retrying in %.1fs (%d/%d)", err.description, delay, attempt, self.max_retries)
                await asyncio.sleep(delay)

    async def request(self, ssml: str) -> bytes:
        """Post one synthesis request and return the audio bytes.

        Raises:
            SynthesisTimeoutError: No response within the timeout.
            RateLimitedError: HTTP 429.
            ProviderError: Any other error status.
            ResponseParseError: The body is not audio.
            SynthesisFailedError: The body is empty.
            TransportFailureError: Connection-level failure.
        """
        try:
            body: object = await self.http.post(
                url=self.endpoint, data=ssml, headers=self.build_headers(), total_timeout=self.timeout
            )
        except AsyncCommTimeoutError as err:
            raise SynthesisTimeoutError(str(err)) from err
        except AsyncCommResponseError as err:
            raise self.classify_status(err) from err
        except AsyncCommInvalidContentTypeError as err:
            raise ResponseParseError(str(err)) from err
        except AsyncCommError as err:
            raise TransportFailureError(err.__cause__ or err) from err

        if body is None:
            msg = "empty response body"
            raise SynthesisFailedError(msg)
        if not isinstance(body, bytes):
            msg: str = f"expected audio, got {type(body).__name__}"
            raise ResponseParseError(msg)
        return body

    @staticmethod
    def classify_status(err: AsyncCommResponseError) -> SynthesisError:
        """Map an HTTP error status to a SynthesisError."""
        if err.status == 429:
            return RateLimitedError(err.retry_after)
        if err.status == 401:
            return ProviderError(401, "invalid API key")
        return ProviderError(err.status, err.body.strip() or "request rejected")

    @staticmethod
    def validate_audio(data: bytes) -> None:
        """Check that data decodes as a sound file with finite, non-empty samples.

        Raises:
            ResponseParseError: The data is not usable audio.
        """
        try:
            samples, _ = soundfile.read(BytesIO(data), dtype="float32", always_2d=True)
        except (RuntimeError, TypeError, ValueError) as err:
            msg: str = f"undecodable audio: {err}"
            raise ResponseParseError(msg) from err
        if not isinstance(samples, np.ndarray) or samples.size == 0:
            msg = "audio contains no samples"
            raise ResponseParseError(msg)
        if not np.isfinite(samples).all():
            msg = "audio contains non-finite samples"
            raise ResponseParseError(msg)

    async def local_synthesis(
        self, text: str, voice: VoiceCategory, *, force_refresh: bool = False
    ) -> AudioResourceHandle:
        """Synthesize with the local command into the cache directory."""
        voice_id: ProviderVoiceId = self.resolve_voice(voice, self.local_provider)
        if not force_refresh:
            cached: Path | None = self.cache.lookup(voice_id, text)
            if cached is not None:
                return AudioResourceHandle(path=cached, voice=voice, cached=True)

        self.cache.prepare()
        path: Path = self.cache.path_for(voice_id, text)
        tmp_path: Path = path.with_name(f".tmp_{uuid.uuid4().hex}{path.suffix}")
        try:
            await self.run_command(self.local_command(voice_id, text, tmp_path), timeout=self.local_timeout)
            if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
                msg = "local synthesizer produced no audio"
                raise SynthesisFailedError(msg)
            tmp_path.replace(path)
        except OSError as err:
            msg: str = f"Could not write '{path}': {err}"
            raise ResourceAccessError(msg) from err
        finally:
            tmp_path.unlink(missing_ok=True)
        return AudioResourceHandle(path=path, voice=voice)

    @abstractmethod
    def local_command(self, voice_id: ProviderVoiceId, text: str, output: Path) -> list[str]:
        """Build the command line that writes a WAV file for text to output."""
        raise NotImplementedError
