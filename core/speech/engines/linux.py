from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from core.speech.engines.azure import AzureSpeechEngine

if TYPE_CHECKING:
    from pathlib import Path

    from models.voice_models import ProviderName, ProviderVoiceId

__all__: list[str] = ["LinuxSpeechEngine"]


class LinuxSpeechEngine(AzureSpeechEngine, platform="linux"):
    """Azure engine with espeak-ng as local synthesizer."""

    local_provider: ClassVar[ProviderName] = "espeak"

    def local_command(self, voice_id: ProviderVoiceId, text: str, output: Path) -> list[str]:
        return ["espeak-ng", "-v", voice_id, "-w", str(output), text]
