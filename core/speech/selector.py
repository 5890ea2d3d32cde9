"""Platform detection and one-time engine selection."""

from __future__ import annotations

import platform as platform_module
import threading
from enum import StrEnum
from typing import TYPE_CHECKING

import core.speech.engines  # noqa: F401  # registers the platform engines
from core.speech.interface import SpeechEngine
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging

    from models.config_models import Config

__all__: list[str] = ["AUTO_PLATFORM", "EngineSelectionError", "EngineSelector", "SelectorState", "detect_platform"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

AUTO_PLATFORM = "auto"


class EngineSelectionError(Exception):
    """No engine can be bound for this platform, or selection was attempted twice."""


class SelectorState(StrEnum):
    UNSELECTED = "unselected"
    SELECTED = "selected"


def detect_platform() -> str:
    """Return the running platform name ('darwin', 'linux', 'windows', ...)."""
    return platform_module.system().lower()


class EngineSelector:
    """Binds exactly one platform engine.

    The platform comes from SPEECH.PLATFORM, or is detected when it is 'auto'.
    select() succeeds at most once per selector.
    """

    def __init__(self, config: Config) -> None:
        self.config: Config = config
        self._state: SelectorState = SelectorState.UNSELECTED
        self._lock: threading.Lock = threading.Lock()

    @property
    def state(self) -> SelectorState:
        return self._state

    def platform_name(self) -> str:
        configured: str = self.config.SPEECH.PLATFORM.strip().lower()
        if configured and configured != AUTO_PLATFORM:
            return configured
        return detect_platform()

    def select(self) -> SpeechEngine:
        """Construct the engine registered for the platform.

        Raises:
            EngineSelectionError: No engine is registered for the platform, or an engine
                was already selected.
        """
        with self._lock:
            if self._state is SelectorState.SELECTED:
                msg = "A speech engine has already been selected"
                raise EngineSelectionError(msg)

            name: str = self.platform_name()
            try:
                engine_cls: type[SpeechEngine] = SpeechEngine.get_engine(name)
            except ValueError as err:
                supported: str = ", ".join(sorted(SpeechEngine.get_registered()))
                msg: str = f"Unsupported platform '{name}'. Supported platforms are: {supported}"
                raise EngineSelectionError(msg) from err

            engine: SpeechEngine = engine_cls(self.config)
            self._state = SelectorState.SELECTED
            logger.info("Selected speech engine '%s' for platform '%s'", engine_cls.__name__, name)
            return engine
