from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import numpy as np
import pytest
import soundfile

from core.speech.engines.linux import LinuxSpeechEngine
from core.speech.errors import (
    InvalidParametersError,
    ProviderError,
    RateLimitedError,
    ResourceAccessError,
    ResponseParseError,
    SynthesisFailedError,
    SynthesisTimeoutError,
    TransportFailureError,
)
from handlers.async_comm import (
    AsyncCommError,
    AsyncCommInvalidContentTypeError,
    AsyncCommResponseError,
    AsyncCommTimeoutError,
)
from models.config_models import Config
from models.voice_models import VoiceCategory
from utils.file_utils import FileUtils

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from models.voice_models import AudioResourceHandle


def _wav_bytes() -> bytes:
    buffer = io.BytesIO()
    soundfile.write(buffer, np.zeros(2400, dtype="int16"), 24000, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def _config(
    tmp_path: Path,
    *,
    api_key: str = "test-key",
    max_retries: int = 2,
    local_fallback: bool = False,
    prefer_local: bool = False,
) -> Config:
    config = Config()
    config.SPEECH.CACHE_DIR = str(tmp_path / "cache")
    config.SPEECH.LOCAL_FALLBACK = local_fallback
    config.SPEECH.PREFER_LOCAL = prefer_local
    config.AZURE.API_KEY = api_key
    config.AZURE.MAX_RETRIES = max_retries
    config.AZURE.RETRY_DELAY = 0.0
    return config


def _response_error(status: int, *, headers: dict[str, str] | None = None, body: str = "") -> AsyncCommResponseError:
    return AsyncCommResponseError("Error response from the server.", status=status, headers=headers, body=body)


def _espeak_runner(commands: list[list[str]]) -> Callable[..., Awaitable[None]]:
    """Replacement for run_command that writes a WAV file where espeak-ng would."""

    async def _fake_run(args: list[str], *, timeout: float) -> None:
        _ = timeout
        commands.append(list(args))
        output = Path(args[args.index("-w") + 1])
        output.write_bytes(_wav_bytes())

    return _fake_run


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[LinuxSpeechEngine]:
    instance = LinuxSpeechEngine(_config(tmp_path))
    instance.http.post = AsyncMock(return_value=_wav_bytes())  # type: ignore[method-assign]
    yield instance
    await instance.close()


@pytest.mark.asyncio
async def test_synthesize_returns_handle_for_female_voice(engine: LinuxSpeechEngine) -> None:
    handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert handle.voice is VoiceCategory.FEMALE
    assert handle.cached is False
    assert handle.path.read_bytes() == _wav_bytes()
    assert handle.uri.startswith("file://")

    kwargs = engine.http.post.await_args.kwargs  # type: ignore[attr-defined]
    assert kwargs["url"] == "https://eastasia.tts.speech.microsoft.com/cognitiveservices/v1"
    assert kwargs["headers"]["Ocp-Apim-Subscription-Key"] == "test-key"
    assert kwargs["headers"]["Content-Type"] == "application/ssml+xml"
    assert kwargs["headers"]["X-Microsoft-OutputFormat"] == "riff-24khz-16bit-mono-pcm"
    assert "name='zh-CN-XiaoxiaoNeural'" in kwargs["data"]
    assert "xml:lang='zh-CN'" in kwargs["data"]
    assert ">你好</prosody>" in kwargs["data"]


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache(engine: LinuxSpeechEngine) -> None:
    first: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.MALE)
    second: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.MALE)

    assert second.cached is True
    assert second.path == first.path
    engine.http.post.assert_awaited_once()  # type: ignore[attr-defined]


def test_ssml_escapes_text(tmp_path: Path) -> None:
    engine = LinuxSpeechEngine(_config(tmp_path))

    ssml: str = engine.build_ssml("<a> & 'b'", "zh-CN-YunxiNeural")

    assert "&lt;a&gt; &amp; 'b'" in ssml
    assert "rate='0.9' pitch='0'" in ssml


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_empty_text_makes_no_network_call(engine: LinuxSpeechEngine, text: str) -> None:
    with pytest.raises(InvalidParametersError):
        await engine.synthesize_speech(text, VoiceCategory.MALE)
    engine.http.post.assert_not_awaited()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_rate_limited_after_retries(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = _response_error(429, headers={"Retry-After": "0"})  # type: ignore[attr-defined]

    with pytest.raises(RateLimitedError) as excinfo:
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert excinfo.value.retry_after == 0.0
    assert excinfo.value.is_retryable is True
    # One request plus MAX_RETRIES retries
    assert engine.http.post.await_count == 3  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_rate_limit_recovers(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = [  # type: ignore[attr-defined]
        _response_error(429, headers={"retry-after": "0"}),
        _wav_bytes(),
    ]

    handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert handle.path.exists()


@pytest.mark.asyncio
async def test_unauthorized_is_provider_error_without_retry(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = _response_error(401)  # type: ignore[attr-defined]

    with pytest.raises(ProviderError) as excinfo:
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert excinfo.value.code == 401
    assert excinfo.value.message == "invalid API key"
    assert excinfo.value.is_retryable is False
    engine.http.post.assert_awaited_once()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_server_error_is_retryable_provider_error(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = _response_error(503, body="Service Unavailable")  # type: ignore[attr-defined]

    with pytest.raises(ProviderError) as excinfo:
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert excinfo.value.code == 503
    assert excinfo.value.message == "Service Unavailable"
    assert excinfo.value.is_retryable is True


@pytest.mark.asyncio
async def test_malformed_body_is_response_parse_error(engine: LinuxSpeechEngine) -> None:
    engine.http.post.return_value = b"this is not audio"  # type: ignore[attr-defined]

    with pytest.raises(ResponseParseError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    # Nothing is cached for a bad response
    assert not any(engine.cache.cache_dir.glob("*.wav"))


@pytest.mark.asyncio
async def test_header_only_wav_is_response_parse_error(engine: LinuxSpeechEngine) -> None:
    buffer = io.BytesIO()
    soundfile.write(buffer, np.zeros(0, dtype="int16"), 24000, format="WAV", subtype="PCM_16")
    engine.http.post.return_value = buffer.getvalue()  # type: ignore[attr-defined]

    with pytest.raises(ResponseParseError, match="no samples"):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)


@pytest.mark.asyncio
async def test_unexpected_content_type_is_response_parse_error(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = AsyncCommInvalidContentTypeError("Unknown Content-Type 'image/png'")  # type: ignore[attr-defined]

    with pytest.raises(ResponseParseError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)


@pytest.mark.asyncio
async def test_text_body_is_response_parse_error(engine: LinuxSpeechEngine) -> None:
    engine.http.post.return_value = "<html>error</html>"  # type: ignore[attr-defined]

    with pytest.raises(ResponseParseError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)


@pytest.mark.asyncio
async def test_empty_body_is_synthesis_failed(engine: LinuxSpeechEngine) -> None:
    engine.http.post.return_value = None  # type: ignore[attr-defined]

    with pytest.raises(SynthesisFailedError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)


@pytest.mark.asyncio
async def test_timeout_is_classified(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = AsyncCommTimeoutError("Timeout")  # type: ignore[attr-defined]

    with pytest.raises(SynthesisTimeoutError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)
    engine.http.post.assert_awaited_once()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_transport_failure_retries_then_raises(engine: LinuxSpeechEngine) -> None:
    cause = ConnectionResetError("reset by peer")
    error = AsyncCommError("The connection to the server has been disconnected.")
    error.__cause__ = cause
    engine.http.post.side_effect = error  # type: ignore[attr-defined]

    with pytest.raises(TransportFailureError) as excinfo:
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert excinfo.value.cause is cause
    assert "reset by peer" in excinfo.value.description
    assert engine.http.post.await_count == 3  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_transport_failure_recovers(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = [AsyncCommError("unreachable"), _wav_bytes()]  # type: ignore[attr-defined]

    handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.ROBOT)

    assert handle.path.exists()
    assert engine.http.post.await_count == 2  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_write_failure_is_resource_access_error(
    engine: LinuxSpeechEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _raise(_path: Path, _data: bytes) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(FileUtils, "atomic_write_bytes", _raise)

    with pytest.raises(ResourceAccessError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)


def test_api_key_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_SPEECH_KEY", "env-key")

    engine = LinuxSpeechEngine(_config(tmp_path, api_key=""))

    assert engine.api_key == "env-key"
    assert engine.use_cloud is True


@pytest.mark.asyncio
async def test_missing_api_key_uses_local_synthesizer(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AZURE_SPEECH_KEY", raising=False)
    engine = LinuxSpeechEngine(_config(tmp_path, api_key=""))
    engine.http.post = AsyncMock()  # type: ignore[method-assign]
    commands: list[list[str]] = []
    engine.run_command = _espeak_runner(commands)  # type: ignore[method-assign]
    try:
        handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.CHILD)
    finally:
        await engine.close()

    engine.http.post.assert_not_awaited()
    assert commands[0][:3] == ["espeak-ng", "-v", "cmn+f5"]
    assert handle.path.read_bytes() == _wav_bytes()


@pytest.mark.asyncio
async def test_cloud_failure_is_not_retried_locally_by_default(engine: LinuxSpeechEngine) -> None:
    engine.http.post.side_effect = _response_error(401)  # type: ignore[attr-defined]
    commands: list[list[str]] = []
    engine.run_command = _espeak_runner(commands)  # type: ignore[method-assign]

    with pytest.raises(ProviderError):
        await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    assert commands == []


@pytest.mark.asyncio
async def test_local_fallback_after_cloud_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    engine = LinuxSpeechEngine(_config(tmp_path, local_fallback=True))
    engine.http.post = AsyncMock(side_effect=_response_error(401))  # type: ignore[method-assign]
    commands: list[list[str]] = []
    engine.run_command = _espeak_runner(commands)  # type: ignore[method-assign]
    try:
        with caplog.at_level("WARNING"):
            handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.MALE)
    finally:
        await engine.close()

    engine.http.post.assert_awaited_once()
    assert commands[0][:3] == ["espeak-ng", "-v", "cmn+m3"]
    assert handle.path.read_bytes() == _wav_bytes()
    assert any("trying the local synthesizer" in rec.message for rec in caplog.records)


@pytest.mark.asyncio
async def test_local_fallback_failure_raises_local_error(tmp_path: Path) -> None:
    engine = LinuxSpeechEngine(_config(tmp_path, local_fallback=True))
    engine.http.post = AsyncMock(side_effect=_response_error(401))  # type: ignore[method-assign]
    engine.run_command = AsyncMock(  # type: ignore[method-assign]
        side_effect=SynthesisFailedError("Executable file not found: 'espeak-ng'")
    )
    try:
        with pytest.raises(SynthesisFailedError, match="espeak-ng") as excinfo:
            await engine.synthesize_speech("你好", VoiceCategory.MALE)
    finally:
        await engine.close()

    assert not isinstance(excinfo.value.__context__, ProviderError)


@pytest.mark.asyncio
async def test_prefer_local_skips_cloud_even_with_key(tmp_path: Path) -> None:
    engine = LinuxSpeechEngine(_config(tmp_path, prefer_local=True))
    engine.http.post = AsyncMock()  # type: ignore[method-assign]
    commands: list[list[str]] = []
    engine.run_command = _espeak_runner(commands)  # type: ignore[method-assign]
    try:
        handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.FEMALE)
    finally:
        await engine.close()

    assert engine.use_cloud is False
    engine.http.post.assert_not_awaited()
    assert len(commands) == 1
    assert handle.path.exists()


@pytest.mark.asyncio
async def test_force_refresh_skips_cached_cloud_audio(engine: LinuxSpeechEngine) -> None:
    await engine.synthesize_speech("你好", VoiceCategory.FEMALE)

    handle: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.FEMALE, force_refresh=True)

    assert handle.cached is False
    assert engine.http.post.await_count == 2  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_force_refresh_reruns_local_synthesizer(tmp_path: Path) -> None:
    engine = LinuxSpeechEngine(_config(tmp_path, prefer_local=True))
    commands: list[list[str]] = []
    engine.run_command = _espeak_runner(commands)  # type: ignore[method-assign]
    try:
        await engine.synthesize_speech("你好", VoiceCategory.ROBOT)
        cached: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.ROBOT)
        refreshed: AudioResourceHandle = await engine.synthesize_speech("你好", VoiceCategory.ROBOT, force_refresh=True)
    finally:
        await engine.close()

    assert cached.cached is True
    assert refreshed.cached is False
    assert len(commands) == 2
