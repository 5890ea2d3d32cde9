"""Data models for the speech service.

This package contains dataclass definitions for configuration and for the voice taxonomy
and audio handles exchanged between callers and speech engines.
"""

from __future__ import annotations

from models.config_models import Azure, Config, General, Speech
from models.voice_models import (
    DEFAULT_PROVIDER,
    AudioResourceHandle,
    ProviderName,
    ProviderVoiceId,
    VoiceCatalog,
    VoiceCategory,
)

__all__: list[str] = [
    "DEFAULT_PROVIDER",
    "AudioResourceHandle",
    "Azure",
    "Config",
    "General",
    "ProviderName",
    "ProviderVoiceId",
    "Speech",
    "VoiceCatalog",
    "VoiceCategory",
]
