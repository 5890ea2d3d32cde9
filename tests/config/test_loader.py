from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from config.loader import (
    ConfigFileNotFoundError,
    ConfigFormatError,
    ConfigLoader,
    ConfigTypeError,
    ConfigValueError,
)

SAMPLE_INI: Path = Path(__file__).resolve().parents[2] / "speech.ini"


def _write_ini(tmp_path: Path, content: str) -> Path:
    ini_path: Path = tmp_path / "speech.ini"
    ini_path.write_text(dedent(content), encoding="utf-8")
    return ini_path


def _load(ini_path: Path, **args) -> ConfigLoader:
    return ConfigLoader(config_filename=str(ini_path), script_name="speak.py", **args)


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AZURE_SPEECH_KEY", raising=False)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigFileNotFoundError, match="speak.py"):
        _load(tmp_path / "missing.ini")


def test_sample_file_loads() -> None:
    loader: ConfigLoader = _load(SAMPLE_INI)

    assert loader.config.GENERAL.SCRIPT_NAME == "speak.py"
    assert loader.config.GENERAL.LOG_FILE == "speech.log"
    assert loader.config.SPEECH.PLATFORM == "auto"
    assert loader.config.SPEECH.CACHE_MAX_AGE_DAYS == 7.0
    assert loader.config.SPEECH.LOCAL_FALLBACK is False
    assert loader.config.SPEECH.PREFER_LOCAL is False
    assert loader.config.AZURE.REGION == "eastasia"
    assert loader.config.AZURE.OUTPUT_FORMAT == "riff-24khz-16bit-mono-pcm"
    assert loader.config.AZURE.MAX_RETRIES == 3


def test_missing_sections_use_defaults(tmp_path: Path) -> None:
    loader: ConfigLoader = _load(_write_ini(tmp_path, "[GENERAL]\nDEBUG = True\n"))

    assert loader.config.GENERAL.DEBUG is True
    assert loader.config.SPEECH.LOCAL_TIMEOUT == 30.0
    assert loader.config.AZURE.LANGUAGE == "zh-CN"


def test_local_synthesizer_switches_are_booleans(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, "[SPEECH]\nLOCAL_FALLBACK = yes\nPREFER_LOCAL = True\n")

    loader: ConfigLoader = _load(ini_path)

    assert loader.config.SPEECH.LOCAL_FALLBACK is True
    assert loader.config.SPEECH.PREFER_LOCAL is True


def test_command_line_overrides(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(
        tmp_path,
        """
        [GENERAL]
        DEBUG = False

        [SPEECH]
        PLATFORM = "linux"
        """,
    )

    loader: ConfigLoader = _load(ini_path, platform="Darwin", debug=True)

    assert loader.config.SPEECH.PLATFORM == "darwin"
    assert loader.config.GENERAL.DEBUG is True


def test_numbers_accept_quoted_forms(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(
        tmp_path,
        """
        [SPEECH]
        CACHE_MAX_SIZE_MB = "50"
        PLAYBACK_LIMIT_TIME = 12.5

        [AZURE]
        MAX_RETRIES = 1.0
        """,
    )

    loader: ConfigLoader = _load(ini_path)

    assert loader.config.SPEECH.CACHE_MAX_SIZE_MB == 50.0
    assert loader.config.SPEECH.PLAYBACK_LIMIT_TIME == 12.5
    assert loader.config.AZURE.MAX_RETRIES == 1


def test_unknown_platform_is_rejected(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, '[SPEECH]\nPLATFORM = "windows"\n')

    with pytest.raises(ConfigValueError, match="Unsupported platform"):
        _load(ini_path)


@pytest.mark.parametrize(
    ("section", "line", "match"),
    [
        ("AZURE", 'REGION = "East Asia"', "valid region"),
        ("AZURE", 'OUTPUT_FORMAT = "audio-24khz-48kbitrate-mono-mp3"', "RIFF"),
        ("AZURE", "MAX_RETRIES = -1", "non-negative"),
        ("AZURE", "TIMEOUT = 0", "positive"),
        ("SPEECH", "LOCAL_TIMEOUT = -5", "positive"),
        ("SPEECH", "CACHE_MAX_AGE_DAYS = 0", "positive"),
        ("SPEECH", "PLAYBACK_LIMIT_TIME = -1", "non-negative"),
    ],
)
def test_out_of_range_values_are_rejected(tmp_path: Path, section: str, line: str, match: str) -> None:
    ini_path: Path = _write_ini(tmp_path, f"[{section}]\n{line}\n")

    with pytest.raises(ConfigValueError, match=match):
        _load(ini_path)


def test_zero_retries_and_no_playback_limit_are_allowed(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(
        tmp_path,
        """
        [SPEECH]
        PLAYBACK_LIMIT_TIME = 0

        [AZURE]
        MAX_RETRIES = 0
        RETRY_DELAY = 0
        """,
    )

    loader: ConfigLoader = _load(ini_path)

    assert loader.config.AZURE.MAX_RETRIES == 0
    assert loader.config.SPEECH.PLAYBACK_LIMIT_TIME == 0.0


def test_unquoted_string_is_a_value_error(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, "[AZURE]\nREGION = eastasia\n")

    with pytest.raises(ConfigValueError, match="AZURE.REGION"):
        _load(ini_path)


def test_non_string_literal_is_a_type_error(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, "[AZURE]\nREGION = 5\n")

    with pytest.raises(ConfigTypeError, match="Expected str"):
        _load(ini_path)


def test_broken_literal_is_a_format_error(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, '[AZURE]\nREGION = "eastasia\n')

    with pytest.raises(ConfigFormatError):
        _load(ini_path)


def test_non_numeric_number_is_a_value_error(tmp_path: Path) -> None:
    ini_path: Path = _write_ini(tmp_path, "[AZURE]\nTIMEOUT = soon\n")

    with pytest.raises(ConfigValueError, match="AZURE.TIMEOUT"):
        _load(ini_path)


def test_unknown_log_level_only_warns(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    ini_path: Path = _write_ini(tmp_path, '[GENERAL]\nLOG_LEVEL = "VERBOSE"\n')

    loader: ConfigLoader = _load(ini_path)

    assert loader.config.GENERAL.LOG_LEVEL == "VERBOSE"
    assert any("Unknown value 'VERBOSE'" in rec.message for rec in caplog.records)


def test_api_key_falls_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_SPEECH_KEY", "env-key")

    assert _load(_write_ini(tmp_path, '[AZURE]\nAPI_KEY = ""\n')).config.AZURE.API_KEY == "env-key"
    assert _load(_write_ini(tmp_path, '[AZURE]\nAPI_KEY = "file-key"\n')).config.AZURE.API_KEY == "file-key"
