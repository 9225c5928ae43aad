"""
maintenance-orchestrator: runtime config loader.

The effective config is layered as defaults, then an optional
``maintenance.toml``, then ``MAINT_*`` environment variables, then CLI
overrides (later layers win). Relative paths resolve against the
directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from maintenance_orchestrator.config.schema import (
    PATH_FIELDS,
    FieldSpec,
    assert_valid_config,
    default_config,
    iter_fields,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "maintenance.toml"
ENV_PREFIX: Final[str] = "MAINT_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build the validated effective config."""

    env = os.environ if environ is None else environ
    if config_path is None and env.get(f"{ENV_PREFIX}CONFIG"):
        config_path = env[f"{ENV_PREFIX}CONFIG"]

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
        file_layer = _read_toml(source) if source.exists() else {}
    else:
        source = Path(config_path).expanduser().resolve()
        if not source.exists():
            raise ConfigLoadError(f"config file not found: {source}")
        file_layer = _read_toml(source)

    # The file layer is validated alone so its errors are not blamed on overrides.
    effective = assert_valid_config(merge_config(default_config(), file_layer))
    for layer in (env_overrides(env), _cli_layer(cli_overrides or {})):
        effective = merge_config(effective, layer)
    effective = assert_valid_config(effective)
    return assert_valid_config(normalize_paths(effective, base_dir=source.parent))


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``MAINT_<SECTION>_<KEY>`` variables, coerced to each field's kind."""

    layer: dict[str, Any] = {}
    for (section, key), spec in iter_fields():
        name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
        raw = environ.get(name)
        if raw is not None:
            layer.setdefault(section, {})[key] = _coerce(raw.strip(), spec, name, section, key)
    return layer


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make every configured path absolute and POSIX-style, relative to ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        fields = normalized.get(section)
        if isinstance(fields, dict) and isinstance(fields.get(key), str):
            candidate = Path(os.path.expandvars(fields[key])).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            fields[key] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Render config as stable, key-sorted JSON."""

    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _coerce(value: str, spec: FieldSpec, name: str, section: str, key: str) -> object:
    target = f"{name} -> {section}.{key}"
    if spec.kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be an integer") from exc
    if spec.kind == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be a number") from exc
    if spec.kind == "bool":
        lowered = value.lower()
        if lowered in _TRUTHY or lowered in _FALSY:
            return lowered in _TRUTHY
        raise ConfigLoadError(f"{target} must be a boolean (true/false/1/0/yes/no/on/off)")
    return value


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        cursor = layer
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return layer


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "normalize_paths",
]
