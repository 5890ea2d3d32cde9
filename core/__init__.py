"""Core components of the speech service.

This package contains the speech engine contract, the platform engines, the playback manager
and the SpeechService facade.
"""

from core.speech import SpeechService
from core.version import VERSION

__all__: list[str] = [
    "VERSION",
    "SpeechService",
]
