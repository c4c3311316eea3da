"""
circuitforge-repair — unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-19

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults, with profiles applied under env and CLI.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from circuitforge_repair.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from circuitforge_repair.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[loop]
attempt_budget = 4
""".strip(),
    )
    env = {"CIRCUITFORGE_LOOP_ATTEMPT_BUDGET": "6"}

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ=env)
    cli_loaded = load_config(
        config_path,
        environ=env,
        cli_overrides={"loop.attempt_budget": 7},
    )

    assert default_loaded["loop"]["attempt_budget"] == 3
    assert file_loaded["loop"]["attempt_budget"] == 4
    assert env_loaded["loop"]["attempt_budget"] == 6
    assert cli_loaded["loop"]["attempt_budget"] == 7


def test_env_names_follow_section_and_field() -> None:
    assert env_name_for_path(("loop", "attempt_budget")) == "CIRCUITFORGE_LOOP_ATTEMPT_BUDGET"
    assert env_name_for_path(("observability", "log_dir")) == "CIRCUITFORGE_OBSERVABILITY_LOG_DIR"


def test_env_values_are_coerced_by_default_type(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "CIRCUITFORGE_LOOP_ATTEMPT_TIMEOUT_SECONDS": "12.5",
            "CIRCUITFORGE_PREVIEW_ENABLED": "yes",
            "CIRCUITFORGE_PREVIEW_COMMAND": "render-gerbers --svg",
            "CIRCUITFORGE_OBSERVABILITY_LOG_LEVEL": "DEBUG",
            "CIRCUITFORGE_COMPILER_COMMAND": "node 'tools/check design.js' --json",
        },
    )

    assert loaded["loop"]["attempt_timeout_seconds"] == 12.5
    assert loaded["preview"]["enabled"] is True
    assert loaded["preview"]["command"] == ["render-gerbers", "--svg"]
    assert loaded["observability"]["log_level"] == "DEBUG"
    assert loaded["compiler"]["command"] == ["node", "tools/check design.js", "--json"]


@pytest.mark.parametrize(
    ("env_name", "raw", "message"),
    [
        ("CIRCUITFORGE_LOOP_ATTEMPT_BUDGET", "many", "must be an integer"),
        ("CIRCUITFORGE_SESSION_TTL_SECONDS", "soon", "must be a number"),
        ("CIRCUITFORGE_PREVIEW_ENABLED", "maybe", "must be a boolean"),
        ("CIRCUITFORGE_COMPILER_COMMAND", "node 'unterminated", "is not a valid command line"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(
    tmp_path: Path, env_name: str, raw: str, message: str
) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message) as excinfo:
        load_config(config_path, environ={env_name: raw})

    assert env_name in str(excinfo.value)


def test_out_of_range_override_fails_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="loop.attempt_budget: must be >= 1"):
        load_config(config_path, environ={}, cli_overrides={"loop.attempt_budget": 0})


def test_profile_precedence_argument_cli_env(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")
    env = {"CIRCUITFORGE_PROFILE": "quick"}

    from_env = load_config(config_path, environ=env)
    from_cli = load_config(config_path, environ=env, cli_overrides={"profile": "strict"})
    from_arg = load_config(
        config_path,
        profile="permissive",
        environ=env,
        cli_overrides={"profile": "strict"},
    )

    assert from_env["loop"]["attempt_budget"] == 1
    assert from_cli["loop"]["attempt_budget"] == 5
    assert from_arg["loop"]["attempt_budget"] == 3
    assert from_arg["loop"]["demote_max_severity"] == 6


def test_env_overrides_apply_on_top_of_profile(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        profile="strict",
        environ={"CIRCUITFORGE_LOOP_ATTEMPT_BUDGET": "2"},
    )

    assert loaded["loop"]["attempt_budget"] == 2
    assert loaded["loop"]["demote_max_severity"] == 0


def test_unknown_profile_fails(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="profile 'turbo' is not defined"):
        load_config(config_path, profile="turbo", environ={})


def test_missing_explicit_file_and_invalid_toml(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[loop\nattempt_budget = ")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "circuitforge.toml"
    _write_config(
        config_path,
        """
[observability]
log_dir = "../runs/./logs"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    expected = (tmp_path.resolve() / "runs" / "logs").as_posix()
    assert loaded["observability"]["log_dir"] == expected


def test_empty_log_dir_stays_empty(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path, environ={"CIRCUITFORGE_OBSERVABILITY_LOG_DIR": ""})

    assert loaded["observability"]["log_dir"] == ""


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")
    env = {"CIRCUITFORGE_LOOP_STAGNATION_LIMIT": "2", "CIRCUITFORGE_PREVIEW_ENABLED": "false"}
    cli = {"repair.schematic_grid": 0.05}

    first = load_config(config_path, environ=env, cli_overrides=cli)
    second = load_config(config_path, environ=env, cli_overrides=cli)

    assert _sha256_json(first) == _sha256_json(second)
    assert first["repair"]["schematic_grid"] == 0.05


def test_dump_effective_config_is_canonical_json(tmp_path: Path) -> None:
    config_path = tmp_path / "circuitforge.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path, environ={})
    dumped = dump_effective_config(loaded)

    parsed = json.loads(dumped)
    assert parsed["loop"] == loaded["loop"]
    assert parsed["compiler"] == {"command": []}
    assert dumped == json.dumps(
        json.loads(dumped), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
