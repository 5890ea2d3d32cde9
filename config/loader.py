"""Configuration file loader and validator.

Handles reading, formatting, and validating settings from the INI configuration file.
Raises exceptions for any issues encountered during loading.
"""

from __future__ import annotations

import ast
import configparser
import os
import re
from configparser import ConfigParser
from dataclasses import fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from core.speech.engines.azure import API_KEY_ENV
from core.speech.interface import SpeechEngine
from core.speech.selector import AUTO_PLATFORM
from models.config_models import Config
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable
    from dataclasses import Field as DataclassField
else:
    from dataclasses import Field as DataclassField

__all__: list[str] = [
    "ConfigFileNotFoundError",
    "ConfigFormatError",
    "ConfigLoader",
    "ConfigLoaderError",
    "ConfigTypeError",
    "ConfigValueError",
]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

ALLOWED_LOG_LEVELS: Final[list[str]] = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
# Azure region names, e.g. 'eastasia', 'westeurope', 'southcentralus'
REGION_PATTERN: Final[str] = r"^[a-z][a-z0-9]{2,30}$"
# Playback supports RIFF (WAV) output only
OUTPUT_FORMAT_PREFIX: Final[str] = "riff-"


class ConfigLoaderError(Exception):
    """Base class for configuration problems."""


class ConfigFileNotFoundError(ConfigLoaderError):
    """No file exists at the configured path."""


class ConfigFormatError(ConfigLoaderError):
    """The INI file could not be parsed."""


class ConfigValueError(ConfigFormatError):
    """A setting holds a value outside its allowed range or form."""


class ConfigTypeError(ConfigFormatError):
    """A setting holds a value of the wrong type."""


class ConfigLoader:
    """Builds a validated Config from an INI file.

    Sections and keys missing from the file keep their dataclass defaults.
    String values are written as quoted literals, e.g. REGION = "eastasia".

    Args:
        config_filename (str): Path of the INI file.
        script_name (str): Name of the running script, shown in the not-found message.
        platform (str | None): Overrides SPEECH.PLATFORM when given.
        debug (bool): Forces GENERAL.DEBUG on when true.

    Raises:
        ConfigFileNotFoundError: The file does not exist.
        ConfigFormatError: The file is malformed or a setting fails validation.
    """

    def __init__(
        self,
        *,
        config_filename: str,
        script_name: str,
        **args,
    ) -> None:
        msg: str
        if not Path(config_filename).is_file():
            msg = (
                f"Configuration file '{config_filename}' not found. "
                f"Copy the sample 'speech.ini' next to '{script_name}' or pass --config."
            )
            raise ConfigFileNotFoundError(msg)

        parser: ConfigParser = ConfigParser(interpolation=None)
        try:
            parser.read(config_filename, encoding="utf-8")
        except configparser.Error as err:
            msg = f"Cannot parse '{config_filename}': {err}"
            raise ConfigFormatError(msg) from None

        self.config = Config()
        self.config.GENERAL.SCRIPT_NAME = script_name
        self._load_sections(parser)

        if args.get("platform") is not None:
            self.config.SPEECH.PLATFORM = args["platform"]
        if args.get("debug", False):
            self.config.GENERAL.DEBUG = True

        self._apply_environment()
        self._validate_settings()

    def _load_sections(self, parser: ConfigParser) -> None:
        """Copy every key present in the file onto the matching Config field."""
        formatter = _ConfigFormatter(self.config, parser)
        for section in fields(self.config):
            if not parser.has_section(section.name):
                logger.debug("Section '%s' not defined; using defaults", section.name)
                continue
            target: Any = getattr(self.config, section.name)
            for key in fields(target):
                if not parser.has_option(section.name, key.name):
                    logger.debug("'%s.%s' not defined; using default", section.name, key.name)
                    continue
                setattr(target, key.name, formatter.apply_format(section, key))

    def _apply_environment(self) -> None:
        """Take the Azure API key from the environment when the file leaves it empty."""
        if not self.config.AZURE.API_KEY and os.environ.get(API_KEY_ENV):
            self.config.AZURE.API_KEY = os.environ[API_KEY_ENV]
            logger.debug("AZURE.API_KEY taken from the environment variable '%s'", API_KEY_ENV)

    def _validate_settings(self) -> None:
        """Validate platform, Azure and numeric settings.

        Raises:
            ConfigFormatError: If validation fails for any setting.
        """
        try:
            self._inspect_defined_item("GENERAL", "LOG_LEVEL", ALLOWED_LOG_LEVELS)
            self._validate_platform("SPEECH", "PLATFORM")
            self._validate_region("AZURE", "REGION")
            self._validate_output_format("AZURE", "OUTPUT_FORMAT")
            for key_name in ("CACHE_MAX_AGE_DAYS", "CACHE_MAX_SIZE_MB", "LOCAL_TIMEOUT"):
                self._validate_number("SPEECH", key_name, allow_zero=False)
            self._validate_number("SPEECH", "PLAYBACK_LIMIT_TIME", allow_zero=True)
            self._validate_number("AZURE", "TIMEOUT", allow_zero=False)
            self._validate_number("AZURE", "MAX_RETRIES", allow_zero=True)
            self._validate_number("AZURE", "RETRY_DELAY", allow_zero=True)
        except (AttributeError, TypeError) as err:
            msg: str = f"Invalid configuration value: {err}"
            raise ConfigFormatError(msg) from None

    def _validate_platform(self, section_name: str, key_name: str) -> None:
        """Normalize the platform name and check it against the registered engines.

        Raises:
            ConfigValueError: If the platform is neither 'auto' nor a registered platform.
        """
        value: str = getattr(getattr(self.config, section_name), key_name).strip().lower()
        field_name: str = f"{section_name}.{key_name}"
        known: list[str] = [AUTO_PLATFORM, *sorted(SpeechEngine.get_registered())]
        if value not in known:
            msg: str = f"Unsupported platform used for '{field_name}': '{value}'. Supported: {', '.join(known)}"
            raise ConfigValueError(msg)
        setattr(getattr(self.config, section_name), key_name, value)

    def _validate_region(self, section_name: str, key_name: str) -> None:
        value: str = getattr(getattr(self.config, section_name), key_name)
        field_name: str = f"{section_name}.{key_name}"

        if not re.match(REGION_PATTERN, value):
            msg: str = f"'{field_name}' is not a valid region name: '{value}'"
            raise ConfigValueError(msg)

    def _validate_output_format(self, section_name: str, key_name: str) -> None:
        value: str = getattr(getattr(self.config, section_name), key_name)
        field_name: str = f"{section_name}.{key_name}"

        if not value.lower().startswith(OUTPUT_FORMAT_PREFIX):
            msg: str = f"'{field_name}' must be a RIFF (WAV) output format: '{value}'"
            raise ConfigValueError(msg)

    def _validate_number(self, section_name: str, key_name: str, *, allow_zero: bool) -> None:
        """Check that a numeric setting is positive (or non-negative when allow_zero is set).

        Raises:
            ConfigValueError: If the value is out of range.
        """
        value: float = getattr(getattr(self.config, section_name), key_name)
        field_name: str = f"{section_name}.{key_name}"

        if value < 0 or (value == 0 and not allow_zero):
            requirement: str = "non-negative" if allow_zero else "positive"
            msg: str = f"'{field_name}' must be {requirement}: {value}"
            raise ConfigValueError(msg)

    def _inspect_defined_item(self, section_name: str, key_name: str, defined_list: list[str]) -> None:
        """Verify that configuration values match allowed options.

        Logs warnings for unrecognized values but does not raise exceptions.

        Args:
            section_name (str): Section name in the config model.
            key_name (str): Field name to inspect.
            defined_list (list[str]): Allowed values.

        Raises:
            ConfigTypeError: If the configured value is neither list nor str.
        """
        value: str | list[str] = getattr(getattr(self.config, section_name), key_name)
        field_name: str = f"{section_name}.{key_name}"

        if isinstance(value, (list, str)):
            values: list[str] = value if isinstance(value, list) else [value]
            for val in values:
                if val not in defined_list:
                    logger.warning("Unknown value '%s' is set for '%s'", val, field_name)
        else:
            msg: str = f"Unsupported type used for '{field_name}': {type(value)}"
            raise ConfigTypeError(msg)


class _ConfigFormatter:
    """Coerces raw INI strings to the type of the matching Config default.

    Numbers and booleans are read as plain INI values. Every other field is a Python literal
    (strings must be quoted) and must evaluate to the same type as its default.
    """

    def __init__(self, config: Config, parser: ConfigParser) -> None:
        self.config: Config = config
        self.parser: ConfigParser = parser
        self._scalar_parsers: dict[type, Callable[[str, str], bool | int | float]] = {
            bool: self.parser.getboolean,
            int: lambda sec, opt: int(float(self._unquote(sec, opt))),
            float: lambda sec, opt: float(self._unquote(sec, opt)),
        }

    def apply_format(self, section: DataclassField[Any], key: DataclassField[Any]) -> Any:
        """Return the typed value of section.key.

        Raises:
            ConfigValueError: The value is not a valid number, boolean or literal.
            ConfigFormatError: The literal is syntactically broken.
            ConfigTypeError: The literal has a different type than the default.
        """
        default: Any = getattr(getattr(self.config, section.name), key.name)
        field_name: str = f"{section.name}.{key.name}"

        scalar_parser: Callable[[str, str], bool | int | float] | None = self._scalar_parsers.get(type(default))
        if scalar_parser is not None:
            try:
                return scalar_parser(section.name, key.name)
            except ValueError as err:
                msg = f"Invalid value for {field_name}: {err}"
                raise ConfigValueError(msg) from err

        raw: str = self.parser[section.name][key.name]
        try:
            value: Any = ast.literal_eval(raw)
        except ValueError as err:
            msg = f"Invalid literal for {field_name}: {raw} (string values must be quoted)"
            raise ConfigValueError(msg) from err
        except SyntaxError as err:
            msg = f"Malformed literal for {field_name}: {raw}"
            raise ConfigFormatError(msg) from err

        if not isinstance(value, type(default)):
            msg = f"Expected {type(default).__name__} for {field_name}, got {type(value).__name__}"
            raise ConfigTypeError(msg)
        return value

    def _unquote(self, section_name: str, key_name: str) -> str:
        value: str = self.parser.get(section_name, key_name).strip()
        for char in ("'", '"'):
            value = value.removeprefix(char).removesuffix(char)
        return value
