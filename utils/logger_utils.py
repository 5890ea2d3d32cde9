from __future__ import annotations

import logging
import sys
import warnings
from logging import Formatter, NullHandler, StreamHandler
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, ClassVar, Final, Literal, NamedTuple, Self, TextIO

if TYPE_CHECKING:
    from pathlib import Path

__all__: list[str] = ["LogLevel", "LoggerUtils"]

type LevelType = Literal[
    "NOTSET",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

_LOG_FILE_SIZE: Final[int] = 2 * 1024 * 1024  # 2MB
_LOG_BACKUP_COUNT: Final[int] = 2

DEFAULT_LOG_LEVEL: Final[int] = logging.INFO
DEFAULT_NAMESPACE: Final[str] = "SpeechService"


class LogLevel(NamedTuple):
    """Logging level as both name and numeric value.

    Attributes:
        name (str): Level name such as 'INFO' or 'DEBUG'.
        value (int): Numeric level used by the logging module.
    """

    name: str
    value: int


class LoggerUtils:
    """Process-wide logging setup for the speech service.

    Configures a namespaced root logger with a terse console handler and an optional
    rotating file handler. Configuration happens once; later constructions are no-ops.

    Attributes:
        _LOGGER_NAMESPACE (str): Namespace prefixed to every logger name.
        _configured (bool): Whether handlers have been installed.
        _instance (LoggerUtils | None): The singleton instance.
    """

    _LOGGER_NAMESPACE: ClassVar[str] = DEFAULT_NAMESPACE
    _configured: ClassVar[bool] = False
    _instance: ClassVar[Self | None] = None

    def __new__(cls, *args, **kwargs) -> Self:
        """Return the singleton instance, creating it on first use.

        Constructor arguments are accepted and ignored here so that keyword arguments meant for
        ``__init__`` do not raise TypeError.

        Returns:
            Self: The singleton instance of LoggerUtils.
        """
        _ = args, kwargs
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(
        self,
        filename: str | Path = "",
        *,
        level: LevelType = "INFO",
        use_null_console: bool = False,
    ) -> None:
        """Install console and file handlers on the namespace root logger.

        Does nothing once logging has been configured.

        Args:
            filename (str | Path): Absolute path of the log file. Empty disables file logging.
                                   Relative paths are resolved by the caller (see FileUtils.resolve_path).
            level (LevelType): Initial level of the namespace root logger.
            use_null_console (bool): Use a NullHandler instead of writing to stderr.
        """
        if LoggerUtils._configured:
            return

        self.root_logger: logging.Logger = logging.getLogger(self._LOGGER_NAMESPACE)
        self._use_null_console: bool = bool(use_null_console) or sys.stderr is None
        filename = str(filename)
        self.set_level(level)

        self._console_logging()
        if filename.strip():
            self._file_logging(filename)

        warnings.showwarning = self.warning_to_log
        LoggerUtils._configured = True

    def warning_to_log(
        self,
        message: Warning | str,
        category: type[Warning],
        filename: str,
        lineno: int,
        file: TextIO | None = None,
        line: str | None = None,
    ) -> None:
        """Write a warning to the log instead of stderr.

        Installed as warnings.showwarning, so it keeps that signature.

        Args:
            message (Warning | str): Warning instance or text.
            category (type[Warning]): Warning class.
            filename (str): File that issued the warning.
            lineno (int): Line number that issued the warning.
            file (TextIO | None): Unused; part of the showwarning signature.
            line (str | None): Unused; part of the showwarning signature.
        """
        _ = file, line
        self.root_logger.warning("%s:%d: %s: %s", filename, lineno, category.__name__, message)

    def _console_logging(self) -> None:
        """Configure console output.

        The console shows WARNING and above with the message text only. With use_null_console a
        NullHandler is installed instead, so records are dropped rather than written to stderr.
        """
        if self._use_null_console:
            if not self._has_handler(NullHandler):
                self.root_logger.addHandler(NullHandler())
            return

        if self._has_handler(StreamHandler):
            self.root_logger.warning("Console logging is already configured.")
            return

        console_handler: StreamHandler[TextIO] = StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(Formatter("%(message)s"))
        self.root_logger.addHandler(console_handler)

    def _file_logging(self, filename: str) -> None:
        """Configure output to a rotating log file.

        Records of DEBUG and above are written as UTF-8, so Mandarin text is logged unchanged.
        The file rotates at 2MB and keeps two backups.

        Args:
            filename (str): Absolute path of the log file.
        """
        if self._has_handler(RotatingFileHandler):
            self.root_logger.warning("File logging is already configured.")
            return

        try:
            file_handler = RotatingFileHandler(
                filename=filename,
                maxBytes=_LOG_FILE_SIZE,
                backupCount=_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except (FileNotFoundError, PermissionError):
            self.root_logger.error("Incorrect log file name: %s\nLogging to the file is not performed.", filename)
            return

        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            Formatter("%(asctime)s %(levelname)-8s %(thread)5d %(lineno)4d %(name)-40s\t%(funcName)s\t%(message)s")
        )
        self.root_logger.addHandler(file_handler)

    def _has_handler(self, handler_type: type) -> bool:
        """Check whether the namespace root logger already has a handler of a type.

        Args:
            handler_type (type): Handler class to look for.

        Returns:
            bool: True if such a handler is installed.
        """
        return any(isinstance(h, handler_type) for h in self.root_logger.handlers)

    def set_level(self, level: LevelType | str) -> None:
        """Set the level of the namespace root logger.

        An unknown level name sets INFO and logs a warning.

        Args:
            level (LevelType | str): Level name, case-insensitive.
        """
        level_map: dict[str, int] = logging.getLevelNamesMapping()
        try:
            self.root_logger.setLevel(level_map[level.upper()])
        except KeyError:
            self.root_logger.setLevel(DEFAULT_LOG_LEVEL)
            self.root_logger.warning("Unknown logging level '%s' specified.\nLogging level set to 'INFO'.", level)

    def get_level(self) -> LogLevel:
        """Get the effective level of the namespace root logger.

        Returns:
            LogLevel: Level name and numeric value.
        """
        level_value: int = self.root_logger.getEffectiveLevel()
        return LogLevel(name=logging.getLevelName(level_value), value=level_value)

    @staticmethod
    def get_logger(name: str | None = None) -> logging.Logger:
        """Get a logger inside the service namespace.

        Args:
            name (str | None): Module name. None returns the namespace root logger.

        Returns:
            logging.Logger: The logger instance.
        """
        full_name: str | None
        if LoggerUtils._LOGGER_NAMESPACE:
            full_name = f"{LoggerUtils._LOGGER_NAMESPACE}.{name}" if name else LoggerUtils._LOGGER_NAMESPACE
        else:
            full_name = name or None
        return logging.getLogger(full_name)
