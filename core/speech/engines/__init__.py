"""Speech engine implementations.

Modules:
- AzureSpeechEngine: Azure REST synthesis with on-disk cache and retry.
- MacOSSpeechEngine: Azure engine for macOS, with `say` as local synthesizer.
- LinuxSpeechEngine: Azure engine for Linux, with espeak-ng as local synthesizer.
"""

from core.speech.engines.azure import AzureSpeechEngine
from core.speech.engines.linux import LinuxSpeechEngine
from core.speech.engines.macos import MacOSSpeechEngine

__all__: list[str] = [
    "AzureSpeechEngine",
    "LinuxSpeechEngine",
    "MacOSSpeechEngine",
]
