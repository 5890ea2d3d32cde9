"""Speak text from the command line.

Synthesizes the given text with the selected voice category and plays it on the default output device.

Exit status:
    0: Success
    1: Synthesis or playback failed
    2: Invalid command-line arguments
    3: Configuration or engine selection error
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Final, NoReturn

from config.loader import ConfigLoader, ConfigLoaderError
from core.speech import EngineSelectionError, SpeechService, SynthesisError
from models.voice_models import VoiceCategory
from utils.file_utils import FileUtils
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    from collections.abc import Sequence

    from models.config_models import Config
    from models.voice_models import AudioResourceHandle

CFG_FILE: Final[str] = "speech.ini"

EXIT_OK: Final[int] = 0
EXIT_SYNTHESIS_ERROR: Final[int] = 1
EXIT_USAGE_ERROR: Final[int] = 2
EXIT_CONFIG_ERROR: Final[int] = 3


def check_python_version() -> None:
    """Check if Python version is 3.13 or later.

    Raises:
        RuntimeError: If Python version is below 3.13.
    """
    if sys.version_info < (3, 13):
        msg = "Python 3.13 or later is required"
        raise RuntimeError(msg)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        print(f"\n{message}\n", file=sys.stderr)
        self.print_help(sys.stderr)
        raise SystemExit(EXIT_USAGE_ERROR)


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = _ArgumentParser(
        description="Synthesize and play text with the platform speech engine",
        epilog='Example: python speak.py --voice female "你好"',
    )
    parser.add_argument("text", help="Text to speak")
    parser.add_argument(
        "--voice",
        dest="voice",
        default=VoiceCategory.FEMALE.value,
        choices=[category.value for category in VoiceCategory],
        help="Voice category (default: %(default)s)",
    )
    parser.add_argument("--config", dest="config", default=CFG_FILE, metavar="FILE", help="Configuration file")
    parser.add_argument("--platform", dest="platform", metavar="NAME", help="Override SPEECH.PLATFORM")
    parser.add_argument("--no-play", dest="play", action="store_false", help="Only synthesize; print the file path")
    parser.add_argument(
        "--refresh", dest="refresh", action="store_true", help="Synthesize again even if the text is cached"
    )
    parser.add_argument("--debug", dest="debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration file and apply CLI overrides.

    Raises:
        ConfigLoaderError: If configuration file cannot be loaded.
    """
    script_name: str = Path(sys.argv[0]).name
    return ConfigLoader(
        config_filename=args.config, script_name=script_name, platform=args.platform, debug=args.debug
    ).config


def setup_logging(config: Config) -> None:
    log_file: str = config.GENERAL.LOG_FILE
    LoggerUtils(
        FileUtils.resolve_path(log_file) if log_file else "",
        level="DEBUG" if config.GENERAL.DEBUG else config.GENERAL.LOG_LEVEL,
    )


async def speak(
    config: Config, text: str, voice: VoiceCategory, *, play: bool = True, force_refresh: bool = False
) -> int:
    """Synthesize text and optionally play it.

    Returns:
        int: Process exit status.
    """
    async with SpeechService(config) as service:
        try:
            handle: AudioResourceHandle = await service.synthesize_speech(text, voice, force_refresh=force_refresh)
        except EngineSelectionError as err:
            print(f"\nError: {err}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except SynthesisError as err:
            print(f"\nError: {err.description}", file=sys.stderr)
            return EXIT_SYNTHESIS_ERROR

        print(f"Audio file: {handle.path}{' (cached)' if handle.cached else ''}")
        if play and not await service.play_audio(handle):
            print("\nError: Audio playback failed", file=sys.stderr)
            return EXIT_SYNTHESIS_ERROR
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    check_python_version()
    args: argparse.Namespace = parse_arguments(argv)
    try:
        config: Config = load_config(args)
    except ConfigLoaderError as err:
        print("\nError: Failed to load configuration file.", file=sys.stderr)
        print(f"Details: {err}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(config)
    voice: VoiceCategory = VoiceCategory.parse(args.voice)
    return asyncio.run(speak(config, args.text, voice, play=args.play, force_refresh=args.refresh))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nCancelled by user.", file=sys.stderr)
        sys.exit(130)
