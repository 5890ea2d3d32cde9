"""Voice taxonomy and synthesized-audio data models.

This module defines:
- VoiceCategory: The closed set of voices a caller may choose from.
- VoiceCatalog: Per-provider mapping from a category to a provider voice identifier.
- AudioResourceHandle: Reference to a synthesized audio file.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, ClassVar, Final, Literal

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

__all__: list[str] = [
    "DEFAULT_PROVIDER",
    "AudioResourceHandle",
    "ProviderName",
    "ProviderVoiceId",
    "VoiceCatalog",
    "VoiceCategory",
]

# Opaque token meaningful only to the engine that consumes it
type ProviderVoiceId = str

ProviderName = Literal["azure", "macos_say", "espeak"]

DEFAULT_PROVIDER: Final[ProviderName] = "azure"


class VoiceCategory(StrEnum):
    """Voice categories selectable by callers."""

    MALE = "male"
    FEMALE = "female"
    CHILD = "child"
    ROBOT = "robot"

    @classmethod
    def parse(cls, value: object) -> VoiceCategory:
        """Convert a member or its string value to a VoiceCategory.

        Args:
            value (object): A VoiceCategory member or one of 'male', 'female', 'child', 'robot'.

        Returns:
            VoiceCategory: The matching category.

        Raises:
            ValueError: If the value does not name a category.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value.strip().lower())
        msg: str = f"Unsupported voice category: {value!r}"
        raise ValueError(msg)


class VoiceCatalog:
    """Maps abstract voice categories to provider-specific voice identifiers.

    Every table is total over VoiceCategory and holds distinct identifiers.
    Tables are read-only for the lifetime of the process.
    """

    _TABLES: ClassVar[Mapping[str, Mapping[VoiceCategory, ProviderVoiceId]]] = MappingProxyType(
        {
            # Azure neural voices (Mandarin)
            "azure": MappingProxyType(
                {
                    VoiceCategory.MALE: "zh-CN-YunxiNeural",
                    VoiceCategory.FEMALE: "zh-CN-XiaoxiaoNeural",
                    VoiceCategory.CHILD: "zh-CN-XiaoyiNeural",
                    VoiceCategory.ROBOT: "zh-CN-YunyangNeural",
                }
            ),
            # macOS `say -v` voice names
            "macos_say": MappingProxyType(
                {
                    VoiceCategory.MALE: "Li-mu",
                    VoiceCategory.FEMALE: "Tingting",
                    VoiceCategory.CHILD: "Meijia",
                    VoiceCategory.ROBOT: "Fred",
                }
            ),
            # espeak-ng voice with variant
            "espeak": MappingProxyType(
                {
                    VoiceCategory.MALE: "cmn+m3",
                    VoiceCategory.FEMALE: "cmn+f3",
                    VoiceCategory.CHILD: "cmn+f5",
                    VoiceCategory.ROBOT: "cmn+klatt",
                }
            ),
        }
    )

    @classmethod
    def providers(cls) -> list[str]:
        """Return the names of all providers with a voice table."""
        return list(cls._TABLES)

    @classmethod
    def resolve_provider_voice(
        cls, category: VoiceCategory, provider: ProviderName = DEFAULT_PROVIDER
    ) -> ProviderVoiceId:
        """Return the provider voice identifier for a category.

        Args:
            category (VoiceCategory): Voice category selected by the caller.
            provider (ProviderName): Provider whose identifier is wanted.

        Returns:
            ProviderVoiceId: Non-empty provider voice identifier.

        Raises:
            KeyError: If the provider has no voice table.
        """
        return cls._TABLES[provider][category]


@dataclass(frozen=True)
class AudioResourceHandle:
    """Reference to synthesized audio produced by an engine.

    The caller owns the handle and decides whether to play or delete the file.

    Attributes:
        path (Path): Location of the WAV file.
        voice (VoiceCategory): Voice the audio was synthesized with.
        cached (bool): True if the audio was served from the synthesis cache.
    """

    path: Path
    voice: VoiceCategory
    cached: bool = False

    @property
    def uri(self) -> str:
        """Return the audio location as a file URI."""
        return self.path.resolve().as_uri()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} path: {self.path}, voice: {self.voice}, cached: {self.cached}>"
