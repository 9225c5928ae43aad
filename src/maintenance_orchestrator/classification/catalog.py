"""Declarative operation/campaign catalog loaded from YAML."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Final, cast

import yaml

from maintenance_orchestrator.constants import CATALOG_SCHEMA_VERSION, DEFAULT_TIMEOUT_SECONDS
from maintenance_orchestrator.domain.models import (
    Campaign,
    CampaignStep,
    ClassificationRule,
    Operation,
    PreconditionPolicy,
)

BUILTIN_CATALOG_NAME: Final[str] = "builtin_catalog.yaml"

_TOP_LEVEL_FIELDS: Final[frozenset[str]] = frozenset({"schema_version", "operations", "campaigns"})
_REQUIRED_OPERATION_FIELDS: Final[frozenset[str]] = frozenset({"name", "command", "mode"})
_ALLOWED_OPERATION_FIELDS: Final[frozenset[str]] = _REQUIRED_OPERATION_FIELDS | frozenset(
    {
        "description",
        "timeout_seconds",
        "default_code",
        "preconditions",
        "rules",
        "output_encoding",
        "stdin_text",
    }
)
_ALLOWED_POLICY_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "requires_privilege",
        "requires_target",
        "restart_pending",
        "already_scheduled",
        "capture_post_state",
    }
)
_BOOLEAN_POLICY_FIELDS: Final[tuple[str, ...]] = (
    "requires_privilege",
    "requires_target",
    "capture_post_state",
)
_ALLOWED_RULE_FIELDS: Final[frozenset[str]] = frozenset({"pattern", "code", "exit_codes", "label"})
_ALLOWED_CAMPAIGN_FIELDS: Final[frozenset[str]] = frozenset(
    {"name", "profile", "steps", "description"}
)
_ALLOWED_STEP_FIELDS: Final[frozenset[str]] = frozenset({"operation", "halt_on"})


class CatalogError(ValueError):
    """Raised when catalog data is malformed."""


@dataclass(frozen=True, slots=True)
class OperationCatalog:
    """Validated, name-indexed operations and campaigns."""

    operations: Mapping[str, Operation]
    campaigns: Mapping[str, Campaign] = field(default_factory=dict)
    source: str = "<memory>"

    @classmethod
    def from_items(
        cls,
        operations: Sequence[Operation],
        campaigns: Sequence[Campaign] = (),
        *,
        source: str = "<memory>",
    ) -> OperationCatalog:
        by_name: dict[str, Operation] = {}
        for operation in operations:
            if operation.name in by_name:
                raise CatalogError(f"{source}: duplicate operation {operation.name!r}")
            by_name[operation.name] = operation
        campaigns_by_name: dict[str, Campaign] = {}
        for campaign in campaigns:
            if campaign.name in campaigns_by_name:
                raise CatalogError(f"{source}: duplicate campaign {campaign.name!r}")
            campaigns_by_name[campaign.name] = campaign
        return cls(operations=by_name, campaigns=campaigns_by_name, source=source)

    def get_operation(self, name: str) -> Operation | None:
        return self.operations.get(name)

    def campaign(self, name: str) -> Campaign:
        try:
            return self.campaigns[name]
        except KeyError as exc:
            known = ", ".join(sorted(self.campaigns)) or "<none>"
            raise CatalogError(f"unknown campaign {name!r}; known campaigns: {known}") from exc

    def operation_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.operations))

    def campaign_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.campaigns))

    def unresolved_references(self) -> dict[str, tuple[str, ...]]:
        """Campaign steps naming operations the catalog does not define."""

        missing: dict[str, tuple[str, ...]] = {}
        for name, campaign in self.campaigns.items():
            unknown = tuple(
                step.operation for step in campaign.steps if step.operation not in self.operations
            )
            if unknown:
                missing[name] = unknown
        return missing


def load_catalog(
    path: Path | str | None = None,
    *,
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> OperationCatalog:
    """Load ``path`` or, when ``None``, the catalog shipped with the package."""

    if path is None:
        resource = resources.files(__package__).joinpath(BUILTIN_CATALOG_NAME)
        text = resource.read_text(encoding="utf-8")
        source = f"<builtin:{BUILTIN_CATALOG_NAME}>"
    else:
        catalog_path = Path(path)
        try:
            text = catalog_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CatalogError(f"unable to read catalog {catalog_path}: {exc}") from exc
        source = str(catalog_path)
    return parse_catalog(text, source=source, default_timeout_seconds=default_timeout_seconds)


def parse_catalog(
    text: str,
    *,
    source: str = "<memory>",
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> OperationCatalog:
    try:
        loaded = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as exc:
        raise CatalogError(f"{source}: invalid YAML ({exc})") from exc

    document = _as_mapping(loaded, source, allowed=_TOP_LEVEL_FIELDS)
    version = document.get("schema_version", CATALOG_SCHEMA_VERSION)
    if version != CATALOG_SCHEMA_VERSION:
        raise CatalogError(
            f"{source}.schema_version: unsupported version {version!r}; "
            f"expected {CATALOG_SCHEMA_VERSION}"
        )

    raw_operations = _as_list(document.get("operations", []), f"{source}.operations")
    operations = [
        _parse_operation(item, f"{source}.operations[{index}]", default_timeout_seconds)
        for index, item in enumerate(raw_operations)
    ]
    campaigns = [
        _parse_campaign(item, f"{source}.campaigns[{index}]")
        for index, item in enumerate(_as_list(document.get("campaigns", []), f"{source}.campaigns"))
    ]
    return OperationCatalog.from_items(operations, campaigns, source=source)


def _parse_operation(value: object, location: str, default_timeout_seconds: float) -> Operation:
    parsed = _as_mapping(value, location, allowed=_ALLOWED_OPERATION_FIELDS)
    missing = sorted(_REQUIRED_OPERATION_FIELDS - set(parsed))
    if missing:
        raise CatalogError(f"{location}: missing required fields: {missing}")

    command = parsed["command"]
    if isinstance(command, str):
        command = command.split()
    command_items = _as_list(command, f"{location}.command")
    if not all(isinstance(part, str) for part in command_items):
        raise CatalogError(f"{location}.command: expected a list of strings")

    rules = tuple(
        _parse_rule(item, f"{location}.rules[{index}]")
        for index, item in enumerate(_as_list(parsed.get("rules", []), f"{location}.rules"))
    )
    policy_raw = _as_mapping(
        parsed.get("preconditions", {}), f"{location}.preconditions", allowed=_ALLOWED_POLICY_FIELDS
    )
    for name in _BOOLEAN_POLICY_FIELDS:
        if name in policy_raw and not isinstance(policy_raw[name], bool):
            raise CatalogError(
                f"{location}.preconditions.{name}: expected true or false, "
                f"got {type(policy_raw[name]).__name__}"
            )
    try:
        policy = PreconditionPolicy(**policy_raw)  # type: ignore[arg-type]
        stdin_text = parsed.get("stdin_text")
        return Operation(
            name=cast("str", parsed["name"]),
            command=tuple(cast("list[str]", command_items)),
            mode=cast("str", parsed["mode"]),  # type: ignore[arg-type]
            timeout_seconds=cast("float", parsed.get("timeout_seconds", default_timeout_seconds)),
            rules=rules,
            default_code=parsed.get("default_code", "ISSUES_OR_REPAIRED"),  # type: ignore[arg-type]
            policy=policy,
            description=str(parsed.get("description", "")),
            output_encoding=str(parsed.get("output_encoding", "utf-8")),
            stdin_text=None if stdin_text is None else str(stdin_text),
        )
    except (TypeError, ValueError) as exc:
        raise CatalogError(f"{location}: {exc}") from exc


def _parse_rule(value: object, location: str) -> ClassificationRule:
    parsed = _as_mapping(value, location, allowed=_ALLOWED_RULE_FIELDS)
    if "pattern" not in parsed or "code" not in parsed:
        raise CatalogError(f"{location}: rules require 'pattern' and 'code'")
    exit_codes_raw = parsed.get("exit_codes")
    exit_codes: frozenset[int] | None = None
    if exit_codes_raw is not None:
        items = _as_list(exit_codes_raw, f"{location}.exit_codes")
        if not all(isinstance(item, int) and not isinstance(item, bool) for item in items):
            raise CatalogError(f"{location}.exit_codes: expected a list of integers")
        exit_codes = frozenset(cast("list[int]", items))
    label = parsed.get("label")
    try:
        return ClassificationRule(
            pattern=cast("str", parsed["pattern"]),
            code=parsed["code"],  # type: ignore[arg-type]
            exit_codes=exit_codes,
            label=None if label is None else str(label),
        )
    except ValueError as exc:
        raise CatalogError(f"{location}: {exc}") from exc


def _parse_campaign(value: object, location: str) -> Campaign:
    parsed = _as_mapping(value, location, allowed=_ALLOWED_CAMPAIGN_FIELDS)
    steps: list[CampaignStep] = []
    for index, item in enumerate(_as_list(parsed.get("steps", []), f"{location}.steps")):
        step_location = f"{location}.steps[{index}]"
        if isinstance(item, str):
            item = {"operation": item}
        step = _as_mapping(item, step_location, allowed=_ALLOWED_STEP_FIELDS)
        halt_on = _as_list(step.get("halt_on", []), f"{step_location}.halt_on")
        try:
            steps.append(
                CampaignStep(
                    operation=cast("str", step.get("operation", "")),
                    halt_on=frozenset(halt_on),  # type: ignore[arg-type]
                )
            )
        except (TypeError, ValueError) as exc:
            raise CatalogError(f"{step_location}: {exc}") from exc
    try:
        return Campaign(
            name=cast("str", parsed.get("name", "")),
            profile=cast("str", parsed.get("profile", "")),  # type: ignore[arg-type]
            steps=tuple(steps),
            description=str(parsed.get("description", "")),
        )
    except ValueError as exc:
        raise CatalogError(f"{location}: {exc}") from exc


def _as_mapping(value: object, path: str, *, allowed: frozenset[str]) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise CatalogError(f"{path}: expected mapping, got {type(value).__name__}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise CatalogError(f"{path}: keys must be strings, got {type(key).__name__}")
        parsed[key] = item
    unknown = sorted(set(parsed) - allowed)
    if unknown:
        raise CatalogError(
            f"{path}: unexpected fields {unknown}; allowed fields: {sorted(allowed)}"
        )
    return parsed


def _as_list(value: object, path: str) -> list[object]:
    if not isinstance(value, list):
        raise CatalogError(f"{path}: expected list, got {type(value).__name__}")
    return value


__all__ = [
    "BUILTIN_CATALOG_NAME",
    "CatalogError",
    "OperationCatalog",
    "load_catalog",
    "parse_catalog",
]
