"""Command-line interface router for maintenance-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn, TypeVar

from maintenance_orchestrator.campaign import CampaignOrchestrator, CampaignResult, StepRunner
from maintenance_orchestrator.classification import CatalogError, OperationCatalog, load_catalog
from maintenance_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from maintenance_orchestrator.domain import (
    Campaign,
    CampaignProfile,
    CampaignStep,
    OperationMode,
    ResultCode,
)
from maintenance_orchestrator.domain.ids import generate_campaign_id
from maintenance_orchestrator.execution import BoundedExecutor
from maintenance_orchestrator.host import LocalHostSignals, PreconditionEvaluator
from maintenance_orchestrator.observability import correlation_scope, setup_logging
from maintenance_orchestrator.recording import JsonlLogSink, ResultRecorder
from maintenance_orchestrator.schedule import (
    BootScheduleRegistry,
    RegistryError,
    ScheduleEntry,
    ScheduleMode,
    create_store,
    normalize_target,
)
from maintenance_orchestrator.ui.render import CLIRenderer, create_renderer

_USAGE_EXIT_CODE = int(ResultCode.PRECHECK_OR_TIMEOUT_FAILURE)

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = _USAGE_EXIT_CODE

    def __str__(self) -> str:
        return self.message


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser whose usage errors exit with the fatal result code."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        raise CLIError(f"{self.prog}: {message}", exit_code=_USAGE_EXIT_CODE)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = _ArgumentParser(
        prog="maint",
        description=(
            "maintenance-orchestrator: non-interactive disk and system-image health campaigns.\n\n"
            "Common workflows:\n"
            "  maint validate C:          Read-only health checks\n"
            "  maint repair C:            Escalating repair campaign\n"
            "  maint schedule query C:    Show boot-time checks for a volume\n"
            "  maint operations           List catalog operations and campaigns\n\n"
            "Exit codes: 0 clean, 1 issues found or repaired, 2 scheduled or blocked,\n"
            "3 fatal (precondition, timeout, config or usage error).\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./maintenance.toml if present).",
    )
    common.add_argument(
        "--catalog",
        dest="catalog_path",
        default=None,
        help="Operation catalog YAML replacing the built-in catalog.",
    )
    common.add_argument(
        "--log-dir",
        dest="log_dir",
        default=None,
        help="Base directory for per-campaign records and logs.",
    )
    common.add_argument(
        "--registry-backend",
        dest="registry_backend",
        choices=("auto", "file", "windows", "memory"),
        default=None,
        help="Boot-schedule store backend (default: from config).",
    )
    common.add_argument(
        "--schedule-store",
        dest="schedule_store",
        default=None,
        help="Store path used by the file registry backend.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # validate / repair ---------------------------------------------------
    for profile in CampaignProfile:
        profile_parser = subparsers.add_parser(
            "validate" if profile is CampaignProfile.VALIDATION else "repair",
            parents=[common],
            help=f"Run the built-in {profile.value} campaign against a target",
            description=_PROFILE_DESCRIPTIONS[profile],
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        profile_parser.add_argument("target", help="Volume or image target, e.g. C:")
        profile_parser.set_defaults(handler=_cmd_campaign, campaign_name=profile.value)

    # campaign ------------------------------------------------------------
    campaign_parser = subparsers.add_parser(
        "campaign",
        parents=[common],
        help="Run a named campaign from the catalog",
        description=(
            "Run any campaign the catalog defines.\n\n"
            "Examples:\n"
            "  maint campaign validation D:\n"
            "  maint campaign nightly C: --catalog site.yaml\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    campaign_parser.add_argument("campaign_name", help="Campaign name")
    campaign_parser.add_argument("target", help="Volume or image target")
    campaign_parser.set_defaults(handler=_cmd_campaign)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run a single catalog operation as a one-step campaign",
        description=(
            "Run one operation with its preconditions, timeout and classification.\n\n"
            "Examples:\n"
            "  maint run chkdsk-scan C:\n"
            "  maint run dism-checkhealth C: --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("operation", help="Operation name")
    run_parser.add_argument("target", help="Volume or image target")
    run_parser.set_defaults(handler=_cmd_run)

    # schedule ------------------------------------------------------------
    schedule_parser = subparsers.add_parser(
        "schedule",
        help="Manage boot-time check entries",
        description=(
            "Add, remove, query or list boot-time checks.\n\n"
            "Examples:\n"
            "  maint schedule add C: --mode repair\n"
            "  maint schedule remove C:\n"
            "  maint schedule query C: D:\n"
            "  maint schedule list --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    schedule_actions = schedule_parser.add_subparsers(dest="schedule_command", required=True)
    mode_choices = tuple(mode.value for mode in ScheduleMode)

    add_parser = schedule_actions.add_parser(
        "add", parents=[common], help="Schedule a boot-time check"
    )
    add_parser.add_argument("target", help="Volume target")
    add_parser.add_argument(
        "--mode", choices=mode_choices, default=ScheduleMode.CHECK.value, help="Check mode"
    )
    add_parser.set_defaults(handler=_cmd_schedule_add)

    remove_parser = schedule_actions.add_parser(
        "remove", parents=[common], help="Remove scheduled boot-time checks"
    )
    remove_parser.add_argument("target", help="Volume target")
    remove_parser.add_argument(
        "--mode", choices=mode_choices, default=None, help="Only remove this mode (default: any)"
    )
    remove_parser.set_defaults(handler=_cmd_schedule_remove)

    query_parser = schedule_actions.add_parser(
        "query", parents=[common], help="Report scheduled checks per target and mode"
    )
    query_parser.add_argument("targets", nargs="+", help="Volume targets")
    query_parser.set_defaults(handler=_cmd_schedule_query)

    list_parser = schedule_actions.add_parser(
        "list", parents=[common], help="Show every line in the boot-schedule store"
    )
    list_parser.set_defaults(handler=_cmd_schedule_list)

    # operations ----------------------------------------------------------
    operations_parser = subparsers.add_parser(
        "operations",
        parents=[common],
        help="List catalog operations and campaigns",
    )
    operations_parser.set_defaults(handler=_cmd_operations)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration",
        description=(
            "Display the effective config after merging defaults, file, env and CLI flags.\n\n"
            "Examples:\n"
            "  maint config\n"
            "  maint config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


_PROFILE_DESCRIPTIONS: dict[CampaignProfile, str] = {
    CampaignProfile.VALIDATION: (
        "Run every read-only check and report the worst result.\n"
        "Only fatal step results stop the campaign.\n\n"
        "Examples:\n"
        "  maint validate C:\n"
        "  maint validate D: --json\n"
    ),
    CampaignProfile.REPAIR: (
        "Run escalating repairs; the last step's result is the verdict.\n"
        "Scheduled/blocked or fatal step results stop the campaign.\n\n"
        "Examples:\n"
        "  maint repair C:\n"
        "  maint repair C: --log-dir D:\\maintenance-logs\n"
    ),
}


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    try:
        namespace = parser.parse_args(list(argv) if argv is not None else None)
        handler = getattr(namespace, "handler", None)
        if not callable(handler):
            parser.print_help(sys.stderr)
            return _USAGE_EXIT_CODE
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_campaign(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = _load_operation_catalog(config)
    try:
        campaign = catalog.campaign(args.campaign_name)
    except CatalogError as exc:
        raise CLIError(str(exc)) from exc
    return _execute_campaign(args, config, catalog, campaign)


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = _load_operation_catalog(config)
    operation = catalog.get_operation(args.operation)
    if operation is None:
        raise CLIError(
            f"unknown operation {args.operation!r}; known: {', '.join(catalog.operation_names())}"
        )
    profile = (
        CampaignProfile.REPAIR
        if operation.mode is OperationMode.WRITE_CAPABLE
        else CampaignProfile.VALIDATION
    )
    campaign = Campaign(
        name=operation.name,
        profile=profile,
        steps=(CampaignStep(operation=operation.name),),
        description=operation.description,
    )
    return _execute_campaign(args, config, catalog, campaign)


def _cmd_schedule_add(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    entry = _schedule_entry(args.target, ScheduleMode(args.mode))
    with _run_logging(config, run_id=generate_campaign_id(), target=entry.target):
        registry = _build_registry(config)
        result = _registry_call(lambda: registry.add(entry))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "schedule add",
                "target": entry.target,
                "mode": entry.mode.value,
                "added": result.added,
                "line": result.line,
                "total": result.total,
            }
        )
        return 0

    renderer = _get_renderer(args)
    if result.added:
        renderer.text(f"Scheduled {entry.mode.value} check for {entry.target}")
    else:
        renderer.text(f"{entry.mode.value} check for {entry.target} already scheduled")
    renderer.kv("Line", result.line)
    return 0


def _cmd_schedule_remove(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    mode = ScheduleMode(args.mode) if args.mode is not None else None
    target = _normalized_target(args.target)
    with _run_logging(config, run_id=generate_campaign_id(), target=target):
        registry = _build_registry(config)
        result = _registry_call(lambda: registry.remove(target, mode))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "schedule remove",
                "target": target,
                "mode": mode.value if mode is not None else None,
                "removed": result.removed,
                "removed_lines": list(result.removed_lines),
                "total": result.total,
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.text(f"Removed {result.removed} entr{'y' if result.removed == 1 else 'ies'}")
    renderer.items(result.removed_lines)
    return 0


def _cmd_schedule_query(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    registry = _build_registry(config)
    report = _registry_call(lambda: registry.query(args.targets))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "schedule query",
                "targets": {
                    target: {mode.value: present for mode, present in modes.items()}
                    for target, modes in report.items()
                },
            }
        )
        return 0

    renderer = _get_renderer(args)
    rows = [
        (target, *("yes" if modes[mode] else "no" for mode in ScheduleMode))
        for target, modes in report.items()
    ]
    renderer.table(("Target", *(mode.value for mode in ScheduleMode)), rows)
    return 0


def _cmd_schedule_list(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    registry = _build_registry(config)
    lines = _registry_call(registry.lines)

    if _flag(args, "json"):
        _emit_json({"command": "schedule list", "lines": lines})
        return 0

    renderer = _get_renderer(args)
    renderer.heading(f"Boot schedule ({len(lines)} line{'s' if len(lines) != 1 else ''})")
    renderer.items(lines, prefix="")
    return 0


def _cmd_operations(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    catalog = _load_operation_catalog(config)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "operations",
                "source": catalog.source,
                "operations": {
                    name: {
                        "mode": operation.mode.value,
                        "command": list(operation.command),
                        "timeout_seconds": operation.timeout_seconds,
                        "description": operation.description,
                    }
                    for name, operation in catalog.operations.items()
                },
                "campaigns": {
                    name: {
                        "profile": campaign.profile.value,
                        "steps": list(campaign.operation_names),
                    }
                    for name, campaign in catalog.campaigns.items()
                },
                "unresolved": {
                    name: list(missing)
                    for name, missing in catalog.unresolved_references().items()
                },
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Catalog", catalog.source)
    renderer.table(
        ("Operation", "Mode", "Timeout", "Description"),
        [
            (
                name,
                operation.mode.value,
                f"{operation.timeout_seconds:g}s",
                operation.description,
            )
            for name, operation in catalog.operations.items()
        ],
        title="Operations:",
    )
    renderer.table(
        ("Campaign", "Profile", "Steps"),
        [
            (name, campaign.profile.value, " -> ".join(campaign.operation_names))
            for name, campaign in catalog.campaigns.items()
        ],
        title="Campaigns:",
    )
    for name, missing in catalog.unresolved_references().items():
        renderer.warning(f"campaign {name} references undefined operations: {', '.join(missing)}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": config})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Config file", args.config_path or "(default)")
    renderer.text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _execute_campaign(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    catalog: OperationCatalog,
    campaign: Campaign,
) -> int:
    target = _normalized_target(args.target)
    campaign_id = generate_campaign_id()
    run_dir = Path(config["paths"]["log_dir"]) / campaign_id
    execution = config["execution"]

    with _run_logging(config, run_id=campaign_id, target=target):
        registry = _build_registry(config)
        runner = StepRunner(
            catalog=catalog,
            evaluator=PreconditionEvaluator(LocalHostSignals(registry=registry)),
            executor=BoundedExecutor(
                kill_grace_seconds=execution["kill_grace_seconds"],
                max_output_chars=execution["max_output_chars"],
            ),
            recorder=ResultRecorder(JsonlLogSink(run_dir)),
        )
        orchestrator = CampaignOrchestrator(runner)
        result = asyncio.run(orchestrator.run(campaign, target, campaign_id=campaign_id))

    _render_campaign(args, result, run_dir)
    return int(result.code)


def _render_campaign(args: argparse.Namespace, result: CampaignResult, run_dir: Path) -> None:
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "campaign",
                "result": result.to_dict(),
                "run_dir": run_dir.as_posix(),
            }
        )
        return

    renderer = _get_renderer(args)
    renderer.campaign(result)
    renderer.kv("Records", run_dir.as_posix())


@contextmanager
def _run_logging(config: Mapping[str, Any], *, run_id: str, target: str) -> Iterator[None]:
    """Per-run structured logging with correlation fields bound for the block."""

    try:
        handle = setup_logging(
            config["observability"],
            run_id=run_id,
            log_dir=config["paths"]["log_dir"],
        )
    except OSError as exc:
        raise CLIError(f"unable to initialize logging: {exc}") from exc
    try:
        with correlation_scope(run_id=run_id, campaign_id=run_id, target=target):
            yield
    finally:
        handle.shutdown()


def _build_registry(config: Mapping[str, Any]) -> BootScheduleRegistry:
    registry_config = config["registry"]
    try:
        store = create_store(
            registry_config["backend"],
            path=config["paths"]["schedule_store"],
            lock_timeout_seconds=registry_config["lock_timeout_seconds"],
        )
    except (RegistryError, ValueError) as exc:
        raise CLIError(str(exc)) from exc
    return BootScheduleRegistry(store)


def _registry_call(call: Callable[[], _T]) -> _T:
    try:
        return call()
    except (RegistryError, ValueError) as exc:
        raise CLIError(str(exc)) from exc


def _normalized_target(target: str) -> str:
    try:
        return normalize_target(target)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


def _schedule_entry(target: str, mode: ScheduleMode) -> ScheduleEntry:
    try:
        return ScheduleEntry(target=target, mode=mode)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


def _load_operation_catalog(config: Mapping[str, Any]) -> OperationCatalog:
    try:
        return load_catalog(
            config["paths"].get("catalog"),
            default_timeout_seconds=config["execution"]["default_timeout_seconds"],
        )
    except CatalogError as exc:
        raise CLIError(str(exc)) from exc


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {
        "paths.log_dir": _absolute(getattr(args, "log_dir", None)),
        "paths.schedule_store": _absolute(getattr(args, "schedule_store", None)),
        "paths.catalog": _absolute(getattr(args, "catalog_path", None)),
        "registry.backend": getattr(args, "registry_backend", None),
    }
    try:
        return load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc)) from exc


def _absolute(value: str | None) -> str | None:
    if value is None:
        return None
    return Path(value).expanduser().resolve().as_posix()


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
