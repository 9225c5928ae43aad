"""
Boot-time schedule registry over a durable ordered sequence of encoded lines.

Each scheduled disk check is one line in the Session Manager ``BootExecute``
convention::

    autocheck autochk /r \\??\\C:

The registry never edits individual lines in place: ``add`` and ``remove``
read the whole sequence, modify it, and write the whole sequence back while
holding the store lock. Uniqueness is exact string equality of the encoded
line, so one target may carry several entries with distinct modes.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from maintenance_orchestrator.constants import BOOT_EXECUTE_PREFIX, NT_DEVICE_PREFIX

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from maintenance_orchestrator.schedule.stores import RegistryStore

_DRIVE_RE: Final[re.Pattern[str]] = re.compile(r"^([A-Za-z]):?[\\/]*$")
_ENTRY_RE: Final[re.Pattern[str]] = re.compile(
    r"^autocheck\s+autochk\s+(?P<flags>(?:/\S+\s+)*)\\\?\?\\(?P<target>\S+)\s*$",
    re.IGNORECASE,
)


class RegistryError(RuntimeError):
    """Base error for boot-schedule registry failures."""


class RegistryReadError(RegistryError):
    """Raised when the durable sequence cannot be read."""


class RegistryWriteError(RegistryError):
    """Raised when persisting the updated sequence fails; nothing is assumed committed."""


class RegistryLockError(RegistryWriteError):
    """Raised when exclusive access to the store cannot be obtained."""


class ScheduleMode(StrEnum):
    """Known boot-time check modes and their ``autochk`` flag."""

    CHECK = "check"
    REPAIR = "repair"
    SPOTFIX = "spotfix"

    @property
    def flag(self) -> str:
        return _MODE_FLAGS[self]

    @classmethod
    def from_flag(cls, flag: str) -> ScheduleMode | None:
        lowered = flag.strip().lower()
        for mode, mode_flag in _MODE_FLAGS.items():
            if mode_flag == lowered:
                return mode
        return None


_MODE_FLAGS: Final[dict[ScheduleMode, str]] = {
    ScheduleMode.CHECK: "/p",
    ScheduleMode.REPAIR: "/r",
    ScheduleMode.SPOTFIX: "/spotfix",
}


def normalize_target(target: str) -> str:
    """Return the canonical target designator (``c``, ``C:\\`` and ``C:`` become ``C:``)."""

    if not isinstance(target, str):
        raise ValueError(f"target must be a string, got {type(target).__name__}")
    stripped = target.strip()
    if not stripped:
        raise ValueError("target must not be empty")
    drive = _DRIVE_RE.fullmatch(stripped)
    if drive is not None:
        return f"{drive.group(1).upper()}:"
    if any(char.isspace() for char in stripped):
        raise ValueError(f"target must not contain whitespace: {target!r}")
    return stripped


def encode_fragment(target: str, mode: ScheduleMode) -> str:
    """Canonical ``<flag> \\??\\<target>`` fragment used for substring queries."""

    return f"{ScheduleMode(mode).flag} {NT_DEVICE_PREFIX}{normalize_target(target)}"


@dataclass(frozen=True, slots=True)
class ScheduleEntry:
    """One scheduled boot-time check: ``(target, mode)`` plus its encoded line."""

    target: str
    mode: ScheduleMode
    raw_encoding: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", normalize_target(self.target))
        object.__setattr__(self, "mode", ScheduleMode(self.mode))
        if not self.raw_encoding:
            object.__setattr__(self, "raw_encoding", self.encode())

    def encode(self) -> str:
        return f"{BOOT_EXECUTE_PREFIX} {encode_fragment(self.target, self.mode)}"

    @classmethod
    def decode(cls, line: str) -> ScheduleEntry | None:
        """Decode a stored line; returns ``None`` for lines that name no target/mode."""

        match = _ENTRY_RE.fullmatch(line.strip())
        if match is None:
            return None
        modes = [
            mode
            for mode in (ScheduleMode.from_flag(flag) for flag in match.group("flags").split())
            if mode is not None
        ]
        if len(modes) != 1:
            return None
        try:
            return cls(target=match.group("target"), mode=modes[0], raw_encoding=line)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class AddResult:
    added: bool
    line: str
    total: int

    @property
    def already_present(self) -> bool:
        return not self.added


@dataclass(frozen=True, slots=True)
class RemoveResult:
    removed: int
    removed_lines: tuple[str, ...]
    total: int


class BootScheduleRegistry:
    """Idempotent add/remove/query over an injected :class:`RegistryStore`."""

    def __init__(self, store: RegistryStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> RegistryStore:
        return self._store

    def lines(self) -> list[str]:
        return self._read()

    def entries(self) -> list[ScheduleEntry]:
        decoded = (ScheduleEntry.decode(line) for line in self._read())
        return [entry for entry in decoded if entry is not None]

    def add(self, entry: ScheduleEntry) -> AddResult:
        line = entry.encode()
        with self._locked():
            lines = self._read()
            if line in lines:
                self._logger.info(
                    "registry_add", target=entry.target, mode=entry.mode.value, added=False
                )
                return AddResult(added=False, line=line, total=len(lines))
            updated = [*lines, line]
            self._write(updated)
        self._logger.info("registry_add", target=entry.target, mode=entry.mode.value, added=True)
        return AddResult(added=True, line=line, total=len(updated))

    def remove(self, target: str, mode: ScheduleMode | None = None) -> RemoveResult:
        """Drop every line for ``target`` whose mode matches ``mode`` (``None`` = any)."""

        wanted_target = normalize_target(target).upper()
        wanted_mode = ScheduleMode(mode) if mode is not None else None
        with self._locked():
            lines = self._read()
            kept: list[str] = []
            dropped: list[str] = []
            for line in lines:
                entry = ScheduleEntry.decode(line)
                if (
                    entry is not None
                    and entry.target.upper() == wanted_target
                    and (wanted_mode is None or entry.mode is wanted_mode)
                ):
                    dropped.append(line)
                else:
                    kept.append(line)
            if dropped:
                self._write(kept)
        self._logger.info(
            "registry_remove",
            target=wanted_target,
            mode=wanted_mode.value if wanted_mode is not None else "any",
            removed=len(dropped),
        )
        return RemoveResult(removed=len(dropped), removed_lines=tuple(dropped), total=len(kept))

    def query(self, targets: Iterable[str]) -> dict[str, dict[ScheduleMode, bool]]:
        """Report, per target and mode, whether its canonical fragment appears in any line."""

        lines = self._read()
        report: dict[str, dict[ScheduleMode, bool]] = {}
        for raw_target in targets:
            target = normalize_target(raw_target)
            report[target] = {
                mode: any(encode_fragment(target, mode) in line for line in lines)
                for mode in ScheduleMode
            }
        return report

    def is_scheduled(self, target: str) -> bool:
        status = self.query([target])
        return any(status[normalize_target(target)].values())

    def _locked(self) -> AbstractContextManager[object]:
        return self._store.lock()

    def _read(self) -> list[str]:
        try:
            return list(self._store.read())
        except RegistryError:
            raise
        except OSError as exc:
            raise RegistryReadError(f"unable to read boot schedule store: {exc}") from exc

    def _write(self, lines: list[str]) -> None:
        try:
            self._store.write(lines)
        except RegistryError:
            raise
        except OSError as exc:
            raise RegistryWriteError(f"unable to persist boot schedule: {exc}") from exc


__all__ = [
    "AddResult",
    "BootScheduleRegistry",
    "RegistryError",
    "RegistryLockError",
    "RegistryReadError",
    "RegistryWriteError",
    "RemoveResult",
    "ScheduleEntry",
    "ScheduleMode",
    "encode_fragment",
    "normalize_target",
]
