"""Durable backends for the boot-schedule registry.

Every store exposes the same whole-sequence contract: ``read()`` returns the
ordered lines, ``write(lines)`` replaces them, and ``lock()`` serializes a
read-modify-write cycle. None of the backends offers partial updates.
"""

from __future__ import annotations

import os
import tempfile
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

from maintenance_orchestrator.constants import BOOT_EXECUTE_DEFAULT_LINE
from maintenance_orchestrator.schedule.registry import (
    RegistryLockError,
    RegistryReadError,
    RegistryWriteError,
)
from maintenance_orchestrator.utils.fs import LockTimeoutError, atomic_write, exclusive_lock_file

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

SESSION_MANAGER_KEY: Final[str] = r"SYSTEM\CurrentControlSet\Control\Session Manager"
BOOT_EXECUTE_VALUE: Final[str] = "BootExecute"


@runtime_checkable
class RegistryStore(Protocol):
    """Whole-sequence durable storage for boot-schedule lines."""

    def read(self) -> list[str]: ...

    def write(self, lines: Sequence[str]) -> None: ...

    def lock(self) -> AbstractContextManager[object]: ...


class MemoryRegistryStore:
    """In-process store used for dry runs and tests."""

    def __init__(self, lines: Sequence[str] = (BOOT_EXECUTE_DEFAULT_LINE,)) -> None:
        self._lines = list(lines)
        self._mutex = threading.Lock()
        self.write_count = 0

    def read(self) -> list[str]:
        return list(self._lines)

    def write(self, lines: Sequence[str]) -> None:
        self._lines = list(lines)
        self.write_count += 1

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._mutex:
            yield


class FileRegistryStore:
    """Plain-text store: one line per entry, replaced atomically on every write."""

    def __init__(
        self,
        path: Path | str,
        *,
        lock_timeout_seconds: float = 10.0,
        seed_lines: Sequence[str] = (BOOT_EXECUTE_DEFAULT_LINE,),
    ) -> None:
        if lock_timeout_seconds < 0:
            raise ValueError("lock_timeout_seconds must be >= 0")
        self._path = Path(path)
        self._lock_path = self._path.with_name(f"{self._path.name}.lock")
        self._lock_timeout_seconds = float(lock_timeout_seconds)
        self._seed_lines = tuple(seed_lines)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> list[str]:
        if not self._path.exists():
            return list(self._seed_lines)
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RegistryReadError(f"unable to read {self._path!s}: {exc}") from exc
        return [line for line in text.splitlines() if line.strip()]

    def write(self, lines: Sequence[str]) -> None:
        payload = "".join(f"{line}\n" for line in lines)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(self._path, payload)
        except OSError as exc:
            raise RegistryWriteError(f"unable to write {self._path!s}: {exc}") from exc

    @contextmanager
    def lock(self) -> Iterator[Path]:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with exclusive_lock_file(
                self._lock_path, timeout_seconds=self._lock_timeout_seconds
            ) as held:
                yield held
        except LockTimeoutError as exc:
            raise RegistryLockError(f"unable to lock {self._path!s}: {exc}") from exc


class WindowsRegistryStore:
    """``BootExecute`` multi-string value under the Session Manager key."""

    def __init__(
        self,
        *,
        key_path: str = SESSION_MANAGER_KEY,
        value_name: str = BOOT_EXECUTE_VALUE,
        lock_timeout_seconds: float = 10.0,
    ) -> None:
        if os.name != "nt":
            raise RegistryReadError("the Windows registry store is only available on Windows")
        self._key_path = key_path
        self._value_name = value_name
        self._lock_timeout_seconds = float(lock_timeout_seconds)
        self._lock_path = Path(tempfile.gettempdir()) / "maintenance-orchestrator-bootexecute.lock"

    def read(self) -> list[str]:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, self._key_path) as key:
                value, value_type = winreg.QueryValueEx(key, self._value_name)
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise RegistryReadError(f"unable to read {self._value_name}: {exc}") from exc
        if value_type != winreg.REG_MULTI_SZ:
            raise RegistryReadError(f"{self._value_name} is not a multi-string value")
        return [str(item) for item in value if str(item).strip()]

    def write(self, lines: Sequence[str]) -> None:
        import winreg

        try:
            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE, self._key_path, 0, winreg.KEY_SET_VALUE
            ) as key:
                winreg.SetValueEx(key, self._value_name, 0, winreg.REG_MULTI_SZ, list(lines))
        except OSError as exc:
            raise RegistryWriteError(f"unable to write {self._value_name}: {exc}") from exc

    @contextmanager
    def lock(self) -> Iterator[Path]:
        try:
            with exclusive_lock_file(
                self._lock_path, timeout_seconds=self._lock_timeout_seconds
            ) as held:
                yield held
        except LockTimeoutError as exc:
            raise RegistryLockError(f"unable to lock {self._value_name}: {exc}") from exc


def create_store(
    backend: str,
    *,
    path: Path | str | None = None,
    lock_timeout_seconds: float = 10.0,
) -> RegistryStore:
    """Build a store from a config ``registry.backend`` value."""

    normalized = backend.strip().lower()
    if normalized == "auto":
        normalized = "windows" if os.name == "nt" else "file"
    if normalized == "memory":
        return MemoryRegistryStore()
    if normalized == "windows":
        return WindowsRegistryStore(lock_timeout_seconds=lock_timeout_seconds)
    if normalized == "file":
        if path is None:
            raise ValueError("the file registry backend requires a store path")
        return FileRegistryStore(path, lock_timeout_seconds=lock_timeout_seconds)
    raise ValueError(f"unsupported registry backend {backend!r}")


__all__ = [
    "BOOT_EXECUTE_VALUE",
    "FileRegistryStore",
    "MemoryRegistryStore",
    "RegistryStore",
    "SESSION_MANAGER_KEY",
    "WindowsRegistryStore",
    "create_store",
]
