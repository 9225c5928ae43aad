"""Executable CLI entrypoint for ``maintenance_orchestrator``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from maintenance_orchestrator.domain.models import ResultCode

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit-code contract; mirrors :class:`ResultCode`."""

    OK = int(ResultCode.OK)
    ISSUES_OR_REPAIRED = int(ResultCode.ISSUES_OR_REPAIRED)
    SCHEDULED_OR_BLOCKED = int(ResultCode.SCHEDULED_OR_BLOCKED)
    FATAL = int(ResultCode.PRECHECK_OR_TIMEOUT_FAILURE)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m maintenance_orchestrator`` and the ``maint`` script."""

    try:
        from maintenance_orchestrator.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        _emit_failure(exc)
        return int(ExitCode.FATAL)


def script_entrypoint() -> None:
    """Console-script shim: exit the process with the routed code."""

    raise SystemExit(cli_entrypoint())


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.OK)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.FATAL)


def _is_expected_failure(exc: BaseException) -> bool:
    expected = _load_expected_error_types()
    return any(isinstance(item, expected) for item in _iter_exception_chain(exc))


def _load_expected_error_types() -> tuple[type[BaseException], ...]:
    from maintenance_orchestrator.classification.catalog import CatalogError
    from maintenance_orchestrator.config.loader import ConfigLoadError
    from maintenance_orchestrator.config.schema import ConfigValidationError
    from maintenance_orchestrator.schedule.registry import RegistryError

    return (
        CatalogError,
        ConfigLoadError,
        ConfigValidationError,
        RegistryError,
        KeyboardInterrupt,
        PermissionError,
        FileNotFoundError,
    )


def _iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _emit_failure(exc: BaseException) -> None:
    if not _is_expected_failure(exc):
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(f"error: {str(exc).strip() or exc.__class__.__name__}")


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "script_entrypoint"]
