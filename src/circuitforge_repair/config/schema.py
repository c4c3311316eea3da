"""
circuitforge-repair — configuration schema and validation.

File: src/circuitforge_repair/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules for the
  convergence loop, repair actions, scoring and the ambient services around them.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric ranges.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown fields and embedded secrets.
- Support profile overlays including strict/permissive/quick.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from circuitforge_repair.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_ATTEMPT_BUDGET,
    DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_EXPORT_MIN_READINESS,
    READINESS_MAX,
    SEVERITY_MAX,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive", "quick")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)

SECTION_NAMES: Final[tuple[str, ...]] = (
    "meta",
    "loop",
    "repair",
    "scoring",
    "compiler",
    "preview",
    "session",
    "observability",
)
OVERLAY_SECTIONS: Final[frozenset[str]] = frozenset(SECTION_NAMES) - {"meta"}


class MetaConfig(TypedDict):
    schema_version: int


class LoopConfig(TypedDict):
    attempt_budget: int
    attempt_timeout_seconds: float
    demote_after_attempts: int
    demote_max_severity: int
    stagnation_limit: int
    localized_congestion_ratio: float


class RepairConfig(TypedDict):
    schematic_grid: float
    layout_spread_factor: float
    relief_step_mm: float
    decoupling_capacitance: str
    anchor_rebuilt_nets: bool


class ScoringConfig(TypedDict):
    blocking_penalty: int
    warning_penalty: int
    export_min_readiness: int


class CompilerConfig(TypedDict):
    command: list[str]


class PreviewConfig(TypedDict):
    enabled: bool
    command: list[str]
    timeout_seconds: float


class SessionConfig(TypedDict):
    ttl_seconds: float
    max_entries: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str
    redact_secrets: bool


class RepairEngineConfig(TypedDict):
    meta: MetaConfig
    loop: LoopConfig
    repair: RepairConfig
    scoring: ScoringConfig
    compiler: CompilerConfig
    preview: PreviewConfig
    session: SessionConfig
    observability: ObservabilityConfig
    profiles: dict[str, dict[str, object]]


DEFAULT_CONFIG: Final[RepairEngineConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "loop": {
        "attempt_budget": DEFAULT_ATTEMPT_BUDGET,
        "attempt_timeout_seconds": DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        "demote_after_attempts": 2,
        "demote_max_severity": 4,
        "stagnation_limit": 0,
        "localized_congestion_ratio": 0.5,
    },
    "repair": {
        "schematic_grid": 0.1,
        "layout_spread_factor": 1.25,
        "relief_step_mm": 1.0,
        "decoupling_capacitance": "100nF",
        "anchor_rebuilt_nets": False,
    },
    "scoring": {
        "blocking_penalty": 20,
        "warning_penalty": 5,
        "export_min_readiness": DEFAULT_EXPORT_MIN_READINESS,
    },
    "compiler": {"command": []},
    "preview": {"enabled": False, "command": [], "timeout_seconds": 10.0},
    "session": {"ttl_seconds": 3600.0, "max_entries": 256},
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": "logs",
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "loop": {"attempt_budget": 5, "demote_max_severity": 0},
        },
        "permissive": {
            "loop": {"demote_max_severity": 6},
        },
        "quick": {
            "loop": {"attempt_budget": 1},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_Parser = Callable[[object, str, "_IssueCollector"], object | None]


def default_config() -> RepairEngineConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade circuitforge.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the circuitforge-repair runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay_raw), active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def dump_redacted(config: Mapping[str, object] | object) -> dict[str, Any]:
    return redact_config(config)


# ---------------------------------------------------------------------------
# Section rules
# ---------------------------------------------------------------------------


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {*SECTION_NAMES, "profiles"}, "", issues)
    _require_keys(payload, set(SECTION_NAMES), "", issues)

    out: dict[str, Any] = {}
    for name in SECTION_NAMES:
        raw = payload.get(name)
        if raw is None:
            continue
        section = _as_object(raw, name, issues)
        if section is not None:
            out[name] = _validate_section(name, section, name, issues, partial=False)

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles = _as_object(profiles_raw, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, "profiles", issues)
    return out


def _validate_section(
    name: str,
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    rules = _SECTION_RULES[name]
    _reject_unknown_keys(payload, set(rules), path, issues)
    if not partial:
        _require_keys(payload, set(rules), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(rules):
        if key not in payload:
            continue
        parsed = rules[key](payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed

    if name == "meta" and "schema_version" in out and out["schema_version"] != ConfigSchemaVersion:
        issues.add(_join(path, "schema_version"), migration_guidance(out["schema_version"]))
    return out


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _as_object(payload[profile_name], profile_path, issues)
        if overlay is None:
            continue
        _reject_unknown_keys(overlay, set(OVERLAY_SECTIONS), profile_path, issues)
        validated: dict[str, Any] = {}
        for section_name in sorted(OVERLAY_SECTIONS):
            raw = overlay.get(section_name)
            if raw is None:
                continue
            section_path = _join(profile_path, section_name)
            section = _as_object(raw, section_path, issues)
            if section is not None:
                validated[section_name] = _validate_section(
                    section_name, section, section_path, issues, partial=True
                )
        out[profile_name] = validated
    return out


# ---------------------------------------------------------------------------
# Scalar parsers
# ---------------------------------------------------------------------------


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_optional_path(value: object, path: str, issues: _IssueCollector) -> str | None:
    """Path text; an empty string is kept and means "disabled"."""

    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    if "\x00" in value:
        issues.add(path, "must not contain NUL bytes")
        return None
    return value.strip()


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    greater_than: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if greater_than is not None and parsed <= greater_than:
        issues.add(path, f"must be > {greater_than}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _as_command(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str):
        issues.add(path, "expected a list of arguments, got a single string")
        return None
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is None:
            return None
        out.append(parsed)
    return out


def _int(**bounds: int) -> _Parser:
    return lambda value, path, issues: _as_int(value, path, issues, **bounds)


def _float(**bounds: float) -> _Parser:
    return lambda value, path, issues: _as_float(value, path, issues, **bounds)


def _enum(*allowed: str) -> _Parser:
    return lambda value, path, issues: _as_enum(value, path, issues, allowed_values=allowed)


_SECTION_RULES: Final[dict[str, dict[str, _Parser]]] = {
    "meta": {"schema_version": _int(minimum=1)},
    "loop": {
        "attempt_budget": _int(minimum=1),
        "attempt_timeout_seconds": _float(greater_than=0.0),
        "demote_after_attempts": _int(minimum=0),
        "demote_max_severity": _int(minimum=0, maximum=SEVERITY_MAX),
        "stagnation_limit": _int(minimum=0),
        "localized_congestion_ratio": _float(greater_than=0.0, maximum=1.0),
    },
    "repair": {
        "schematic_grid": _float(greater_than=0.0),
        "layout_spread_factor": _float(greater_than=1.0),
        "relief_step_mm": _float(greater_than=0.0),
        "decoupling_capacitance": _as_str,
        "anchor_rebuilt_nets": _as_bool,
    },
    "scoring": {
        "blocking_penalty": _int(minimum=0),
        "warning_penalty": _int(minimum=0),
        "export_min_readiness": _int(minimum=0, maximum=READINESS_MAX),
    },
    "compiler": {"command": _as_command},
    "preview": {
        "enabled": _as_bool,
        "command": _as_command,
        "timeout_seconds": _float(greater_than=0.0),
    },
    "session": {
        "ttl_seconds": _float(greater_than=0.0),
        "max_entries": _int(minimum=1),
    },
    "observability": {
        "log_level": _enum("DEBUG", "INFO", "WARNING", "ERROR"),
        "log_format": _enum("json", "text"),
        "log_dir": _as_optional_path,
        "redact_secrets": _as_bool,
    },
}


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value) if isinstance(key, str)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return _deep_copy_mapping(value)
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "SECTION_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "RepairEngineConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
