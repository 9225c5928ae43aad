"""
maintenance-orchestrator: configuration schema and validation.

Every accepted key is declared once in ``SCHEMA`` as a ``FieldSpec``. The
same table drives strict validation here and ``MAINT_*`` environment
coercion in the loader. Validation reports every problem at once as
structured issues (dotted field path plus message).
"""

from __future__ import annotations

import copy
import math
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final, Literal, NotRequired, TypedDict

from maintenance_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_TIMEOUT_SECONDS,
    LOG_DIR,
    SCHEDULE_STORE_PATH,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
REGISTRY_BACKENDS: Final[tuple[str, ...]] = ("auto", "file", "windows", "memory")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

FieldKind = Literal["str", "path", "int", "float", "bool", "choice"]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Type and range constraints for one config key."""

    kind: FieldKind
    required: bool = True
    minimum: int | float | None = None
    exclusive_minimum: float | None = None
    choices: tuple[str, ...] = ()
    case_insensitive: bool = False


SCHEMA: Final[Mapping[str, Mapping[str, FieldSpec]]] = MappingProxyType(
    {
        "meta": {"schema_version": FieldSpec("int", minimum=1)},
        "paths": {
            "log_dir": FieldSpec("path"),
            "schedule_store": FieldSpec("path"),
            "catalog": FieldSpec("path", required=False),
        },
        "execution": {
            "default_timeout_seconds": FieldSpec("float", exclusive_minimum=0.0),
            "kill_grace_seconds": FieldSpec("float", exclusive_minimum=0.0),
            "max_output_chars": FieldSpec("int", minimum=1),
        },
        "registry": {
            "backend": FieldSpec("choice", choices=REGISTRY_BACKENDS),
            "lock_timeout_seconds": FieldSpec("float", minimum=0.0),
        },
        "observability": {
            "log_level": FieldSpec("choice", choices=LOG_LEVELS, case_insensitive=True),
            "log_to_stdout": FieldSpec("bool"),
        },
    }
)

# Resolved relative to the directory holding the config file.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, fields in SCHEMA.items()
    for key, spec in fields.items()
    if spec.kind == "path"
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    log_dir: str
    schedule_store: str
    catalog: NotRequired[str]


class ExecutionConfig(TypedDict):
    default_timeout_seconds: float
    kill_grace_seconds: float
    max_output_chars: int


class RegistryConfig(TypedDict):
    backend: str
    lock_timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: str
    log_to_stdout: bool


class MaintenanceConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    execution: ExecutionConfig
    registry: RegistryConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[MaintenanceConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "paths": {
        "log_dir": LOG_DIR.as_posix(),
        "schedule_store": SCHEDULE_STORE_PATH.as_posix(),
    },
    "execution": {
        "default_timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "kill_grace_seconds": DEFAULT_KILL_GRACE_SECONDS,
        "max_output_chars": DEFAULT_MAX_OUTPUT_CHARS,
    },
    "registry": {
        "backend": "auto",
        "lock_timeout_seconds": 10.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _InvalidField(ValueError):
    pass


def iter_fields() -> Iterator[tuple[tuple[str, str], FieldSpec]]:
    """Yield every declared ``((section, key), spec)`` pair in schema order."""

    for section, fields in SCHEMA.items():
        for key, spec in fields.items():
            yield (section, key), spec


def default_config() -> MaintenanceConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version == ConfigSchemaVersion:
        return "schema version is current"
    if found_version < ConfigSchemaVersion:
        action = "upgrade maintenance.toml to the current schema"
        relation = "older"
    else:
        action = "upgrade the maintenance-orchestrator runtime"
        relation = "newer"
    return (
        f"schema version {found_version} is {relation} than supported "
        f"{ConfigSchemaVersion}; {action}"
    )


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is mutated."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against ``SCHEMA`` and collect every issue."""

    issues: list[ConfigValidationIssue] = []

    def report(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path=path, message=message))

    if not isinstance(config, Mapping):
        report("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=tuple(issues))

    for name in sorted(set(config) - set(SCHEMA), key=str):
        report(str(name), "unknown field")

    normalized: dict[str, Any] = {}
    for section in sorted(SCHEMA):
        fields = SCHEMA[section]
        if section not in config:
            report(section, "missing required field")
            continue
        payload = config[section]
        if not isinstance(payload, Mapping):
            report(section, f"expected object, got {type(payload).__name__}")
            continue

        out: dict[str, Any] = {}
        for key in sorted(payload, key=str):
            if key not in fields:
                report(f"{section}.{key}", "unknown field")
        for key in sorted(fields):
            path = f"{section}.{key}"
            spec = fields[key]
            if key not in payload:
                if spec.required:
                    report(path, "missing required field")
                continue
            try:
                out[key] = parse_field(payload[key], spec)
            except _InvalidField as exc:
                report(path, str(exc))
        normalized[section] = out

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != ConfigSchemaVersion:
        report("meta.schema_version", migration_guidance(version))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def parse_field(value: object, spec: FieldSpec) -> object:
    """Return the normalized value for ``spec`` or raise ``ValueError``."""

    if spec.kind == "bool":
        if not isinstance(value, bool):
            raise _InvalidField(f"expected boolean, got {type(value).__name__}")
        return value

    if spec.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise _InvalidField(f"expected integer, got {type(value).__name__}")
        _check_range(value, spec)
        return value

    if spec.kind == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _InvalidField(f"expected number, got {type(value).__name__}")
        number = float(value)
        if not math.isfinite(number):
            raise _InvalidField("must be finite")
        _check_range(number, spec)
        return number

    if not isinstance(value, str):
        raise _InvalidField(f"expected string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise _InvalidField("must not be empty")
    if spec.kind == "path" and "\x00" in text:
        raise _InvalidField("must not contain NUL bytes")
    if spec.kind == "choice":
        if spec.case_insensitive:
            text = text.upper()
        if text not in spec.choices:
            expected = ", ".join(sorted(spec.choices))
            raise _InvalidField(f"invalid value {text!r}; expected one of: {expected}")
    return text


def _check_range(number: int | float, spec: FieldSpec) -> None:
    if spec.minimum is not None and number < spec.minimum:
        raise _InvalidField(f"must be >= {spec.minimum}")
    if spec.exclusive_minimum is not None and number <= spec.exclusive_minimum:
        raise _InvalidField(f"must be > {spec.exclusive_minimum}")


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "FieldSpec",
    "LOG_LEVELS",
    "MaintenanceConfig",
    "PATH_FIELDS",
    "REGISTRY_BACKENDS",
    "SCHEMA",
    "assert_valid_config",
    "default_config",
    "iter_fields",
    "merge_config",
    "migration_guidance",
    "parse_field",
    "validate_config",
]
