from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from core.speech.engines.azure import AzureSpeechEngine

if TYPE_CHECKING:
    from pathlib import Path

    from models.voice_models import ProviderName, ProviderVoiceId

__all__: list[str] = ["MacOSSpeechEngine"]


class MacOSSpeechEngine(AzureSpeechEngine, platform="darwin"):
    """Azure engine with the macOS `say` command as local synthesizer."""

    local_provider: ClassVar[ProviderName] = "macos_say"

    def local_command(self, voice_id: ProviderVoiceId, text: str, output: Path) -> list[str]:
        # 16-bit little-endian PCM so the playback manager can read it
        return ["say", "-v", voice_id, "-o", str(output), "--file-format=WAVE", "--data-format=LEI16@22050", text]
