"""Configuration data models for the speech service.

Each dataclass represents one section of the INI configuration file.
Field names match the INI keys so the loader can map them one to one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__: list[str] = [
    "Azure",
    "Config",
    "General",
    "Speech",
]


@dataclass
class General:
    DEBUG: bool = False
    LOG_FILE: str = ""
    LOG_LEVEL: str = "INFO"
    SCRIPT_NAME: str = ""


@dataclass
class Speech:
    # "auto" detects the running platform; otherwise a registered platform name
    PLATFORM: str = "auto"
    CACHE_DIR: str = "~/.cache/speech_cache"
    CACHE_MAX_AGE_DAYS: float = 7.0
    CACHE_MAX_SIZE_MB: float = 100.0
    # Seconds; 0 disables the limit
    PLAYBACK_LIMIT_TIME: float = 0.0
    LOCAL_TIMEOUT: float = 30.0
    # Retry a failed cloud request with the local synthesizer
    LOCAL_FALLBACK: bool = False
    # Use the local synthesizer even when an API key is configured
    PREFER_LOCAL: bool = False


@dataclass
class Azure:
    REGION: str = "eastasia"
    API_KEY: str = ""
    LANGUAGE: str = "zh-CN"
    OUTPUT_FORMAT: str = "riff-24khz-16bit-mono-pcm"
    PROSODY_RATE: str = "0.9"
    TIMEOUT: float = 30.0
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 2.0


@dataclass
class Config:
    GENERAL: General = field(default_factory=General)
    SPEECH: Speech = field(default_factory=Speech)
    AZURE: Azure = field(default_factory=Azure)
