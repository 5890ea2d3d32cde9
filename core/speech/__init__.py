"""Speech synthesis and playback.

This package provides the engine contract, the classified error taxonomy, one-time platform
engine selection and the SpeechService facade.
"""

from core.speech.audio_playback_manager import AudioPlaybackManager
from core.speech.errors import (
    InvalidParametersError,
    PlaybackFailureError,
    ProviderError,
    RateLimitedError,
    ResourceAccessError,
    ResponseParseError,
    SynthesisError,
    SynthesisErrorKind,
    SynthesisFailedError,
    SynthesisTimeoutError,
    TransportFailureError,
    UnknownSynthesisError,
    classify_exception,
)
from core.speech.interface import SpeechEngine
from core.speech.selector import EngineSelectionError, EngineSelector
from core.speech.service import SpeechService

__all__: list[str] = [
    "AudioPlaybackManager",
    "EngineSelectionError",
    "EngineSelector",
    "InvalidParametersError",
    "PlaybackFailureError",
    "ProviderError",
    "RateLimitedError",
    "ResourceAccessError",
    "ResponseParseError",
    "SpeechEngine",
    "SpeechService",
    "SynthesisError",
    "SynthesisErrorKind",
    "SynthesisFailedError",
    "SynthesisTimeoutError",
    "TransportFailureError",
    "UnknownSynthesisError",
    "classify_exception",
]
