"""Host-state signals consumed by the precondition evaluator."""

from __future__ import annotations

import ctypes
import os
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

import psutil

from maintenance_orchestrator.schedule.registry import normalize_target

if TYPE_CHECKING:
    from maintenance_orchestrator.schedule.registry import BootScheduleRegistry

_POSIX_REBOOT_MARKER: Final[Path] = Path("/var/run/reboot-required")

# (key path, value name or None for "key exists", reason label)
_WINDOWS_RESTART_SIGNALS: Final[tuple[tuple[str, str | None, str], ...]] = (
    (
        r"SOFTWARE\Microsoft\Windows\CurrentVersion\Component Based Servicing\RebootPending",
        None,
        "component-servicing",
    ),
    (
        r"SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\RebootRequired",
        None,
        "windows-update",
    ),
    (
        r"SYSTEM\CurrentControlSet\Control\Session Manager",
        "PendingFileRenameOperations",
        "pending-file-rename",
    ),
)


@runtime_checkable
class HostSignals(Protocol):
    """Read-only view of the host signals that gate maintenance operations."""

    def is_privileged(self) -> bool: ...

    def restart_pending_reasons(self) -> tuple[str, ...]: ...

    def is_target_available(self, target: str) -> bool: ...

    def is_scheduled(self, target: str) -> bool: ...


class LocalHostSignals(HostSignals):
    """Read the running host: admin rights, pending restart, mounted volumes, boot queue."""

    def __init__(self, *, registry: BootScheduleRegistry | None = None) -> None:
        self._registry = registry

    def is_privileged(self) -> bool:
        if os.name == "nt":
            try:
                return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
            except OSError:
                return False
        return os.geteuid() == 0

    def restart_pending_reasons(self) -> tuple[str, ...]:
        if os.name != "nt":
            return ("reboot-required",) if _POSIX_REBOOT_MARKER.exists() else ()
        return tuple(
            reason
            for key_path, value_name, reason in _WINDOWS_RESTART_SIGNALS
            if _windows_signal_present(key_path, value_name)
        )

    def is_target_available(self, target: str) -> bool:
        try:
            normalized = normalize_target(target)
        except ValueError:
            return False
        wanted = _comparable(normalized)
        try:
            partitions = psutil.disk_partitions(all=True)
        except OSError:
            partitions = []
        for partition in partitions:
            if wanted in {_comparable(partition.mountpoint), _comparable(partition.device)}:
                return True
        candidate = Path(f"{normalized}\\" if normalized.endswith(":") else normalized)
        return candidate.exists()

    def is_scheduled(self, target: str) -> bool:
        if self._registry is None:
            return False
        return self._registry.is_scheduled(target)


def _comparable(value: str) -> str:
    stripped = value.strip().rstrip("\\/")
    if len(stripped) == 2 and stripped[1] == ":":
        return stripped.upper()
    return stripped or value.strip()


def _windows_signal_present(key_path: str, value_name: str | None) -> bool:
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path) as key:
            if value_name is None:
                return True
            value, _ = winreg.QueryValueEx(key, value_name)
    except OSError:
        return False
    return bool(value)


__all__ = ["HostSignals", "LocalHostSignals"]
