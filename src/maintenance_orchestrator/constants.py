"""Stable constants shared across the maintenance orchestrator."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
CATALOG_SCHEMA_VERSION: Final[int] = 1
STEP_RECORD_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file location unless overridden).
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")
SCHEDULE_STORE_PATH: Final[PurePosixPath] = PurePosixPath("state/boot_schedule.txt")

# Execution defaults.
DEFAULT_TIMEOUT_SECONDS: Final[float] = 3600.0
DEFAULT_KILL_GRACE_SECONDS: Final[float] = 5.0
DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 200_000

# Boot-time schedule encoding (Session Manager ``BootExecute`` convention).
BOOT_EXECUTE_DEFAULT_LINE: Final[str] = "autocheck autochk *"
BOOT_EXECUTE_PREFIX: Final[str] = "autocheck autochk"
NT_DEVICE_PREFIX: Final[str] = "\\??\\"

TARGET_PLACEHOLDER: Final[str] = "{target}"

__all__ = [
    "BOOT_EXECUTE_DEFAULT_LINE",
    "BOOT_EXECUTE_PREFIX",
    "CATALOG_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_KILL_GRACE_SECONDS",
    "DEFAULT_MAX_OUTPUT_CHARS",
    "DEFAULT_TIMEOUT_SECONDS",
    "LOG_DIR",
    "NT_DEVICE_PREFIX",
    "SCHEDULE_STORE_PATH",
    "STEP_RECORD_SCHEMA_VERSION",
    "TARGET_PLACEHOLDER",
]
