from __future__ import annotations

import asyncio
import contextlib
import itertools
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Final

import pyaudio
import soundfile

from core.speech.errors import PlaybackFailureError
from utils.file_utils import FileUtils, FileUtilsError
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from pathlib import Path

# soundfile -> pyaudio conversion tables
# PCM_S8, PCM_U8, PCM_24 are commented out because they have not been confirmed to play
FORMAT_CONV: Final[dict[str, tuple[int, str]]] = {
    # "PCM_S8": (pyaudio.paInt8, "int16"),
    "PCM_16": (pyaudio.paInt16, "int16"),
    # "PCM_24": (pyaudio.paInt24, "int32"),
    "PCM_32": (pyaudio.paInt32, "int32"),
    # "PCM_U8": (pyaudio.paUInt8, "int16"),
    "FLOAT": (pyaudio.paFloat32, "float32"),
}

SUPPORTED_SUFFIXES: Final[list[str]] = [".wav"]

# Seconds allowed beyond one buffer for the device to play out queued audio
DRAIN_MARGIN: Final[float] = 1.0
DRAIN_POLL_INTERVAL: Final[float] = 0.01

__all__: list[str] = ["AudioPlaybackManager", "PlaybackSession"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

_session_ids = itertools.count(1)


@dataclass(eq=False)
class PlaybackSession:
    """State of one playback request.

    `stopped` and `resolved` are only written while holding the manager lock.
    `completed` and `terminate` are touched by the PyAudio callback thread, which never takes the lock.

    Attributes:
        file_path (Path): Audio file being played.
        loop (asyncio.AbstractEventLoop): Loop that owns `done`.
        session_id (int): Sequence number for logging.
        done (asyncio.Event): Set when the stream ends or the session is stopped.
        terminate (threading.Event): Makes the stream callback abort on its next invocation.
        stream (pyaudio.Stream | None): Open output stream, if any.
        completed (bool): The stream reached the end of the file.
        stopped (bool): stop() was called before the outcome was resolved.
        resolved (bool): The outcome has been fixed.
        outcome (bool): Final result; True only for a complete, unstopped playback.
    """

    file_path: Path
    loop: asyncio.AbstractEventLoop
    session_id: int = field(default_factory=lambda: next(_session_ids))
    done: asyncio.Event = field(default_factory=asyncio.Event)
    terminate: threading.Event = field(default_factory=threading.Event)
    stream: pyaudio.Stream | None = None
    completed: bool = False
    stopped: bool = False
    resolved: bool = False
    outcome: bool = False

    def signal_done(self) -> None:
        """Wake the coroutine waiting on `done`; safe from any thread."""
        try:
            self.loop.call_soon_threadsafe(self.done.set)
        except RuntimeError as err:
            # Event loop already closed
            logger.debug("Could not signal playback session %d: %s", self.session_id, err)


def _stream_callback_logic(
    in_data,
    frame_count,
    time_info,
    status,
    /,
    sf: soundfile.SoundFile,
    dtype: str,
    session: PlaybackSession,
) -> tuple[bytes | None, int]:
    """Fill the PyAudio output buffer from the sound file.

    Runs on the PortAudio callback thread.

    Returns:
        tuple[bytes | None, int]: Audio data and stream status flag.
    """
    # The first four are position-only arguments required by PyAudio.
    _ = in_data, time_info, status
    try:
        if session.terminate.is_set():
            session.signal_done()
            return (None, pyaudio.paAbort)

        data = sf.read(frames=frame_count, dtype=dtype)
        # Considered complete when there is no more data to play
        if data.shape[0] < frame_count:
            session.completed = True
            session.signal_done()
            return (data.tobytes(), pyaudio.paComplete)

    except soundfile.SoundFileRuntimeError:
        session.signal_done()
        return (None, pyaudio.paAbort)

    return (data.tobytes(), pyaudio.paContinue)


class AudioPlaybackManager:
    """Plays WAV files on the default output device using PyAudio and soundfile.

    Only one session plays at a time; starting a new one stops the previous one.
    `stop()` is synchronous and thread-safe: when it returns the stream is closed, no further frames
    of the stopped session are produced, and the session's outcome is fixed to False.
    A session that reached the end of its file resolves only after the device has played the
    buffers still queued, so True means the whole file was heard. The device is opened and
    drained in worker threads.

    Supported WAV formats: PCM_16, PCM_32, FLOAT
    """

    def __init__(self, *, limit_time: float | None = None) -> None:
        """Initializes the AudioPlaybackManager.

        Args:
            limit_time (float | None): Maximum playback duration in seconds. None or <= 0 disables it.
        """
        self.limit_time: float | None = limit_time if limit_time and limit_time > 0 else None
        self._pyaudio: pyaudio.PyAudio | None = None
        self._lock: threading.Lock = threading.Lock()
        self._pyaudio_lock: threading.Lock = threading.Lock()
        self._current: PlaybackSession | None = None

    def start(self, file_path: Path) -> asyncio.Task[bool]:
        """Register a playback request and schedule it on the running loop.

        The request is registered before this method returns, so a following stop() always affects it.

        Args:
            file_path (Path): WAV file to play.

        Returns:
            asyncio.Task[bool]: Resolves True when playback completed, False otherwise.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        session = PlaybackSession(file_path=file_path, loop=loop)
        with self._lock:
            if self._current is not None:
                logger.debug("Stopping session %d for new playback", self._current.session_id)
                self._stop_locked(self._current)
            self._current = session
        logger.debug("Playback session %d registered: '%s'", session.session_id, file_path)
        return loop.create_task(self._run(session), name=f"playback_{session.session_id}")

    def stop(self) -> None:
        """Stop the current playback. Calling it when nothing is playing is a no-op."""
        with self._lock:
            session: PlaybackSession | None = self._current
            if session is None:
                return
            self._stop_locked(session)
            self._current = None
        logger.info("Playback stopped")

    def _stop_locked(self, session: PlaybackSession) -> None:
        """Mark a session stopped and discard its output. Caller holds the lock."""
        if not session.resolved:
            session.stopped = True
        session.terminate.set()
        self._close_stream_locked(session)
        session.signal_done()

    def _close_stream_locked(self, session: PlaybackSession) -> None:
        stream: pyaudio.Stream | None = session.stream
        session.stream = None
        if stream is None:
            return
        # close() on an active stream aborts it and discards pending buffers
        with contextlib.suppress(OSError, AttributeError):
            stream.close()

    def _resolve(self, session: PlaybackSession) -> bool:
        with self._lock:
            if not session.resolved:
                session.resolved = True
                session.outcome = session.completed and not session.stopped
            if self._current is session:
                self._current = None
            return session.outcome

    async def _run(self, session: PlaybackSession) -> bool:
        try:
            await self._play(session)
        except TimeoutError:
            logger.info("Playback time limit reached (%ss)", self.limit_time)
            with self._lock:
                self._stop_locked(session)
        except PlaybackFailureError as err:
            logger.error("%s", err)
        except asyncio.CancelledError:
            logger.info("Playback task was cancelled")
            with self._lock:
                self._stop_locked(session)
            self._resolve(session)
            raise
        finally:
            with self._lock:
                self._close_stream_locked(session)

        outcome: bool = self._resolve(session)
        logger.info("Playback session %d finished: %s", session.session_id, "completed" if outcome else "stopped")
        return outcome

    async def _play(self, session: PlaybackSession) -> None:
        """Open the stream, wait for the last frame and let the device play out its buffers.

        Raises:
            PlaybackFailureError: The file is missing, unreadable, in an unsupported format,
                or the device could not be opened.
            TimeoutError: The playback time limit was reached.
        """
        try:
            FileUtils.validate_file_path(session.file_path, SUPPORTED_SUFFIXES)
        except FileUtilsError as err:
            raise PlaybackFailureError(str(err)) from err

        try:
            with soundfile.SoundFile(session.file_path) as sf:
                try:
                    (_format, _dtype) = FORMAT_CONV[sf.subtype]
                except KeyError:
                    msg: str = f"Unsupported wav file format: '{sf.subtype}'"
                    raise PlaybackFailureError(msg) from None

                callback_fn: partial[tuple[bytes | None, int]] = partial(
                    _stream_callback_logic, sf=sf, dtype=_dtype, session=session
                )
                # 0.2 seconds of audio per buffer
                frame_buffer_size: int = max(2048, int(sf.samplerate * 0.2))
                logger.debug(
                    "Audio properties - Channels: %s, Sampling rate: %s, Buffer size: %s",
                    sf.channels,
                    sf.samplerate,
                    frame_buffer_size,
                )
                if session.stopped:
                    return
                try:
                    started: bool = await asyncio.to_thread(
                        self._open_stream,
                        session,
                        format=_format,
                        channels=sf.channels,
                        rate=sf.samplerate,
                        output=True,
                        frames_per_buffer=frame_buffer_size,
                        stream_callback=callback_fn,
                        start=False,
                    )
                    if not started:
                        return

                    async with asyncio.timeout(self.limit_time):
                        await session.done.wait()
                        if session.completed:
                            await self._drain(session, frame_buffer_size / sf.samplerate)
                finally:
                    # The stream must be closed before the sound file it reads from
                    with self._lock:
                        self._close_stream_locked(session)
        except TimeoutError:
            raise
        except (soundfile.LibsndfileError, soundfile.SoundFileRuntimeError) as err:
            msg = f"Soundfile error: {err}"
            raise PlaybackFailureError(msg) from err
        except OSError as err:
            msg = f"Audio device error: {err}"
            raise PlaybackFailureError(msg) from err

    def _open_stream(self, session: PlaybackSession, **stream_args: Any) -> bool:
        """Open and start the output stream. Runs in a worker thread.

        Returns:
            bool: False if the session was stopped while the device was being opened.
        """
        stream: pyaudio.Stream = self.pyaudio.open(**stream_args)
        with self._lock:
            if session.stopped:
                with contextlib.suppress(OSError, AttributeError):
                    stream.close()
                return False
            session.stream = stream
            stream.start_stream()
        return True

    async def _drain(self, session: PlaybackSession, buffer_seconds: float) -> None:
        """Wait until the device has played the buffers queued after the last frame.

        A session stopped meanwhile is left to stop(), which discards what is still queued.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        deadline: float = loop.time() + buffer_seconds + DRAIN_MARGIN
        while True:
            with self._lock:
                stream: pyaudio.Stream | None = session.stream
                if stream is None or session.stopped:
                    return
                try:
                    if not stream.is_active():
                        break
                except OSError as err:
                    logger.debug("Stream state unavailable: %s", err)
                    break
            if loop.time() >= deadline:
                logger.warning("Output stream still active %.1fs after the last frame", buffer_seconds + DRAIN_MARGIN)
                break
            await asyncio.sleep(DRAIN_POLL_INTERVAL)
        await asyncio.to_thread(self._finish_stream, session)

    def _finish_stream(self, session: PlaybackSession) -> None:
        """Stop and close a drained stream. Runs in a worker thread."""
        with self._lock:
            stream: pyaudio.Stream | None = session.stream
            if stream is None or session.stopped:
                return
            session.stream = None
            # stop_stream() returns once every queued buffer has been played
            with contextlib.suppress(OSError):
                stream.stop_stream()
            with contextlib.suppress(OSError, AttributeError):
                stream.close()
        logger.debug("Playback session %d drained", session.session_id)

    @property
    def is_playing(self) -> bool:
        with self._lock:
            session: PlaybackSession | None = self._current
            return session is not None and session.stream is not None and session.stream.is_active()

    @property
    def pyaudio(self) -> pyaudio.PyAudio:
        """Gets the PyAudio instance, creating it on first use."""
        with self._pyaudio_lock:
            if self._pyaudio is None:
                self._pyaudio = pyaudio.PyAudio()
                logger.info("PyAudio instance created")
            return self._pyaudio

    def release_pyaudio(self) -> None:
        """Stop playback and release the PyAudio resources."""
        self.stop()
        with self._pyaudio_lock:
            if self._pyaudio is not None:
                self._pyaudio.terminate()
                self._pyaudio = None
                logger.info("PyAudio resources released")
