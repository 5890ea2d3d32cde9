"""Utility modules for the speech service.

This package provides logging configuration and file handling helpers.
"""

from utils.file_utils import FileUtils
from utils.logger_utils import LoggerUtils

__all__: list[str] = ["FileUtils", "LoggerUtils"]
