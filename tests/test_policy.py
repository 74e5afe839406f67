from __future__ import annotations

from pathlib import Path

import pytest

from script_sandbox import Sandbox, SandboxPolicy


def test_defaults_come_from_bundled_policy() -> None:
    policy = SandboxPolicy()

    assert policy.timeout_ms == 5000
    assert policy.timer_cap_ms == 5000
    assert policy.history_capacity == 10
    assert policy.preloaded_modules == ["math", "random"]
    assert "math" in policy.allowed_modules
    assert "os" not in policy.allowed_modules
    assert "len" in policy.allowed_builtins
    for name in ("open", "eval", "exec", "compile", "input", "globals", "breakpoint"):
        assert name not in policy.allowed_builtins


def test_default_lists_are_not_shared() -> None:
    first = SandboxPolicy()
    first.allowed_modules.append("os")

    assert "os" not in SandboxPolicy().allowed_modules


def test_policy_file_overrides_defaults(tmp_path: Path) -> None:
    config = tmp_path / "policy.toml"
    config.write_text(
        "[policy]\n"
        "timeout_ms = 250\n"
        "history_capacity = 3\n"
        'allowed_modules = ["math", "json"]\n'
        "\n"
        "[policy.extra_globals]\n"
        "limit = 7\n",
        encoding="utf-8",
    )

    policy = SandboxPolicy.from_file(str(config))

    assert policy.timeout_ms == 250
    assert policy.history_capacity == 3
    assert policy.timer_cap_ms == 5000
    assert policy.allowed_modules == ["math", "json"]
    assert policy.preloaded_modules == ["math"]
    assert policy.extra_globals == {"limit": 7}
    assert policy.config_path == str(config)


def test_sandbox_accepts_policy_file(tmp_path: Path) -> None:
    config = tmp_path / "policy.toml"
    config.write_text("[policy]\nhistory_capacity = 2\n", encoding="utf-8")

    sandbox = Sandbox(policy_file=str(config))

    assert sandbox.policy.history_capacity == 2


def test_policy_and_policy_file_are_exclusive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not both"):
        Sandbox(SandboxPolicy(), policy_file=str(tmp_path / "x.toml"))


def test_missing_policy_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Policy file not found"):
        SandboxPolicy.from_file(str(tmp_path / "missing.toml"))


@pytest.mark.parametrize("field", ["timeout_ms", "timer_cap_ms", "history_capacity", "max_output_lines"])
def test_limits_must_be_positive(field: str) -> None:
    with pytest.raises(ValueError, match=field):
        SandboxPolicy(**{field: 0})


def test_preloaded_modules_must_be_allowed() -> None:
    with pytest.raises(ValueError, match="preloaded_modules"):
        SandboxPolicy(allowed_modules=["math"], preloaded_modules=["math", "random"])


def test_extra_globals_keys_must_be_identifiers() -> None:
    with pytest.raises(ValueError, match="not a valid identifier"):
        SandboxPolicy(extra_globals={"not valid": 1})


def test_list_fields_must_hold_strings(tmp_path: Path) -> None:
    config = tmp_path / "policy.toml"
    config.write_text("[policy]\nallowed_builtins = [1, 2]\n", encoding="utf-8")

    with pytest.raises(ValueError, match="allowed_builtins"):
        SandboxPolicy.from_file(str(config))
