"""
Bounded execution of one external maintenance command.

The executor launches a single child process in its own process group,
drains its combined stdout/stderr into a buffer as it arrives, and races
the child's exit against a wall-clock deadline. The run is complete when
the child exits; helpers it left behind get ``kill_grace_seconds`` to
release the output pipe before the group is killed. On timeout (or
cancellation of the awaiting coroutine) the whole process tree is killed
and reaped before control returns, and whatever output had been captured
so far is still reported.
"""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import psutil
import structlog

from maintenance_orchestrator.constants import DEFAULT_KILL_GRACE_SECONDS, DEFAULT_MAX_OUTPUT_CHARS

if TYPE_CHECKING:
    from collections.abc import Mapping

    from maintenance_orchestrator.domain.models import JSONValue

_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Fully rendered command invocation."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    stdin_text: str | None = None
    output_encoding: str = "utf-8"

    def __post_init__(self) -> None:
        argv = tuple(self.argv)
        if not argv or any(not isinstance(part, str) or not part for part in argv):
            raise ValueError("CommandSpec.argv must be a non-empty sequence of strings")
        object.__setattr__(self, "argv", argv)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "argv": list(self.argv),
            "cwd": self.cwd,
            "stdin_text": self.stdin_text,
            "output_encoding": self.output_encoding,
        }


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one bounded run.

    ``completed`` is true only when the process exited on its own before the
    deadline; launch failures and timeouts both report ``completed=False``.
    """

    output: str
    completed: bool
    timed_out: bool = False
    exit_code: int | None = None
    error: str | None = None
    duration_ms: int = 0
    argv: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.timed_out and self.completed:
            raise ValueError("ExecutionResult cannot be both completed and timed out")
        if self.timed_out and self.exit_code is not None:
            raise ValueError("ExecutionResult.exit_code must be None when timed_out is true")

    @property
    def launch_failed(self) -> bool:
        return not self.completed and not self.timed_out

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "argv": list(self.argv),
            "completed": self.completed,
            "timed_out": self.timed_out,
            "exit_code": self.exit_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@runtime_checkable
class ProcessHandle(Protocol):
    """Subset of :class:`asyncio.subprocess.Process` the executor relies on."""

    pid: int
    stdout: asyncio.StreamReader | None
    returncode: int | None

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


@runtime_checkable
class ProcessLauncher(Protocol):
    """Starts the external command as an independently cancellable unit."""

    async def launch(self, spec: CommandSpec) -> ProcessHandle: ...


class SubprocessLauncher(ProcessLauncher):
    """Local child process, leading its own process group, with stderr merged into stdout."""

    async def launch(self, spec: CommandSpec) -> ProcessHandle:
        if os.name == "nt":
            isolation: dict[str, Any] = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        else:
            isolation = {"start_new_session": True}
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            cwd=spec.cwd,
            env=dict(spec.env) if spec.env is not None else None,
            stdin=(
                asyncio.subprocess.PIPE
                if spec.stdin_text is not None
                else asyncio.subprocess.DEVNULL
            ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            **isolation,
        )
        if spec.stdin_text is not None and process.stdin is not None:
            # Small confirmation answers only; the pipe buffer absorbs them.
            with suppress(BrokenPipeError, ConnectionResetError):
                process.stdin.write(spec.stdin_text.encode(spec.output_encoding, "replace"))
                await process.stdin.drain()
            process.stdin.close()
        return process


class BoundedExecutor:
    """Run one command with a hard deadline and guaranteed process reclamation."""

    def __init__(
        self,
        *,
        launcher: ProcessLauncher | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
        logger: Any | None = None,
    ) -> None:
        if kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be > 0")
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0")
        self._launcher = launcher if launcher is not None else SubprocessLauncher()
        self._kill_grace_seconds = float(kill_grace_seconds)
        self._max_output_chars = max_output_chars
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run(self, spec: CommandSpec, timeout_seconds: float) -> ExecutionResult:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        started_ns = time.monotonic_ns()
        try:
            process = await self._launcher.launch(spec)
        except OSError as exc:
            self._logger.error("command_launch_failed", argv=list(spec.argv), error=str(exc))
            return ExecutionResult(
                output="",
                completed=False,
                error=f"unable to start {spec.argv[0]!r}: {exc}",
                duration_ms=_elapsed_ms(started_ns),
                argv=spec.argv,
            )

        buffer = bytearray()
        reader = asyncio.create_task(_drain(process.stdout, buffer))
        waiter = asyncio.create_task(process.wait())

        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout_seconds)
        except asyncio.CancelledError:
            await self._reclaim(process, reader, waiter)
            raise

        if waiter in done:
            exit_code = waiter.result()
            await self._release_output(process, reader)
            return ExecutionResult(
                output=self._decode(buffer, spec.output_encoding),
                completed=True,
                exit_code=exit_code,
                duration_ms=_elapsed_ms(started_ns),
                argv=spec.argv,
            )

        await self._reclaim(process, reader, waiter)
        self._logger.warning(
            "command_timed_out",
            argv=list(spec.argv),
            timeout_seconds=timeout_seconds,
            captured_bytes=len(buffer),
        )
        return ExecutionResult(
            output=self._decode(buffer, spec.output_encoding),
            completed=False,
            timed_out=True,
            error=f"command timed out after {timeout_seconds:.3f}s",
            duration_ms=_elapsed_ms(started_ns),
            argv=spec.argv,
        )

    async def _release_output(self, process: ProcessHandle, reader: asyncio.Task[None]) -> None:
        """After the child exited: let helpers release the pipe, then kill what is left."""

        _, pending = await asyncio.wait({reader}, timeout=self._kill_grace_seconds)
        if pending:
            self._logger.warning("command_output_held_open", pid=process.pid)
        _kill_group(process.pid)
        await self._stop_reader(reader)

    async def _reclaim(
        self,
        process: ProcessHandle,
        reader: asyncio.Task[None],
        waiter: asyncio.Task[int],
    ) -> None:
        # Descendants are only discoverable while the child is still alive.
        descendants = _descendants(process.pid)
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
        for descendant in descendants:
            with suppress(psutil.Error):
                descendant.kill()
        _kill_group(process.pid)

        _, pending = await asyncio.wait({waiter}, timeout=self._kill_grace_seconds)
        if pending:
            self._logger.error("command_reap_timed_out", pid=process.pid)
            waiter.cancel()
        with suppress(asyncio.CancelledError):
            await waiter
        if descendants:
            await asyncio.to_thread(
                psutil.wait_procs, descendants, timeout=self._kill_grace_seconds
            )
        await self._stop_reader(reader)

    async def _stop_reader(self, reader: asyncio.Task[None]) -> None:
        _, pending = await asyncio.wait({reader}, timeout=self._kill_grace_seconds)
        if pending:
            reader.cancel()
        with suppress(asyncio.CancelledError):
            await reader

    def _decode(self, raw: bytes | bytearray, encoding: str) -> str:
        return _truncate_head(_normalize_output_text(bytes(raw), encoding), self._max_output_chars)


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.extend(chunk)


def _descendants(pid: int | None) -> list[psutil.Process]:
    if pid is None:
        return []
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.Error:
        return []


def _kill_group(pid: int | None) -> None:
    """Kill what remains of the process group the child leads (POSIX only)."""

    if pid is None or os.name == "nt":
        return
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(pid, signal.SIGKILL)


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes, encoding: str) -> str:
    try:
        text = raw.decode(encoding, errors="replace")
    except LookupError:
        text = raw.decode("utf-8", errors="replace")
    text = text.replace("\x00", "")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_head(text: str, max_chars: int | None) -> str:
    # Tool verdicts are printed last, so the tail is what gets kept.
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"...[truncated {omitted} chars]\n{text[-max_chars:]}"


__all__ = [
    "BoundedExecutor",
    "CommandSpec",
    "ExecutionResult",
    "ProcessHandle",
    "ProcessLauncher",
    "SubprocessLauncher",
]
