from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return normalized policy dictionary.

    A missing file yields a conservative built-in policy so the package still
    imports when the bundled TOML was stripped by a packager.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_ms": 5000,
            "timer_cap_ms": 5000,
            "history_capacity": 10,
            "max_output_lines": 1000,
            "queue_timeout_ms": 30000,
            "preloaded_modules": ["math"],
            "allowed_modules": ["math"],
            "allowed_builtins": ["len", "range", "str", "int", "float", "list", "dict"],
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings policy field.

    Example:
        ```python
        modules = _list_of_str(["math", "json"], "allowed_modules")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _resolve_preloaded(preloaded: Any, allowed: Any) -> list[str]:
    """Pick preloaded modules for a policy file, defaulting to the bundled set.

    When the file narrows `allowed_modules` but says nothing about preloads,
    the bundled preloads are filtered down to the allowed ones.

    Example:
        ```python
        names = _resolve_preloaded(None, ["math"])
        ```
    """
    if preloaded is not None:
        return _list_of_str(preloaded, "preloaded_modules")
    if allowed is None:
        return DEFAULT_PRELOADED_MODULES.copy()
    allowed_names = set(_list_of_str(allowed, "allowed_modules"))
    return [name for name in DEFAULT_PRELOADED_MODULES if name in allowed_names]


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("timeout_ms", 5000))
DEFAULT_TIMER_CAP_MS = int(_DEFAULT_POLICY_RAW.get("timer_cap_ms", 5000))
DEFAULT_HISTORY_CAPACITY = int(_DEFAULT_POLICY_RAW.get("history_capacity", 10))
DEFAULT_MAX_OUTPUT_LINES = int(_DEFAULT_POLICY_RAW.get("max_output_lines", 1000))
DEFAULT_QUEUE_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("queue_timeout_ms", 30000))
DEFAULT_RENDER_MAX_DEPTH = int(_DEFAULT_POLICY_RAW.get("render_max_depth", 6))
DEFAULT_RENDER_MAX_LENGTH = int(_DEFAULT_POLICY_RAW.get("render_max_length", 100))
DEFAULT_RENDER_MAX_STRING = int(_DEFAULT_POLICY_RAW.get("render_max_string", 2000))
DEFAULT_RENDER_WIDTH = int(_DEFAULT_POLICY_RAW.get("render_width", 80))
DEFAULT_ALLOWED_BUILTINS = _list_of_str(
    _DEFAULT_POLICY_RAW.get("allowed_builtins", []), "allowed_builtins"
)
DEFAULT_ALLOWED_MODULES = _list_of_str(
    _DEFAULT_POLICY_RAW.get("allowed_modules", []), "allowed_modules"
)
DEFAULT_PRELOADED_MODULES = _list_of_str(
    _DEFAULT_POLICY_RAW.get("preloaded_modules", []), "preloaded_modules"
)

_POSITIVE_INT_FIELDS = (
    "timeout_ms",
    "timer_cap_ms",
    "history_capacity",
    "max_output_lines",
    "queue_timeout_ms",
    "render_max_depth",
    "render_max_length",
    "render_max_string",
    "render_width",
)


@dataclass(slots=True)
class SandboxPolicy:
    """Limits and allow-lists applied to every sandboxed script run.

    Example:
        ```python
        policy = SandboxPolicy(timeout_ms=1000, allowed_modules=["math"])
        ```
    """

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    timer_cap_ms: int = DEFAULT_TIMER_CAP_MS
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    max_output_lines: int = DEFAULT_MAX_OUTPUT_LINES
    queue_timeout_ms: int = DEFAULT_QUEUE_TIMEOUT_MS
    render_max_depth: int = DEFAULT_RENDER_MAX_DEPTH
    render_max_length: int = DEFAULT_RENDER_MAX_LENGTH
    render_max_string: int = DEFAULT_RENDER_MAX_STRING
    render_width: int = DEFAULT_RENDER_WIDTH
    allowed_builtins: list[str] = field(default_factory=lambda: DEFAULT_ALLOWED_BUILTINS.copy())
    allowed_modules: list[str] = field(default_factory=lambda: DEFAULT_ALLOWED_MODULES.copy())
    preloaded_modules: list[str] = field(
        default_factory=lambda: DEFAULT_PRELOADED_MODULES.copy()
    )
    extra_globals: dict[str, Any] = field(default_factory=dict)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric limits and module lists after initialization.

        Example:
            ```python
            SandboxPolicy(timeout_ms=250)
            ```
        """
        for name in _POSITIVE_INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"'{name}' must be a positive integer")
        missing = [name for name in self.preloaded_modules if name not in self.allowed_modules]
        if missing:
            raise ValueError(
                "preloaded_modules must also be listed in allowed_modules: "
                + ", ".join(missing)
            )
        for key in self.extra_globals:
            if not isinstance(key, str) or not key.isidentifier():
                raise ValueError(f"extra_globals key {key!r} is not a valid identifier")

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxPolicy":
        """Create a policy instance from a TOML file.

        Keys missing from the file fall back to the bundled defaults.

        Example:
            ```python
            policy = SandboxPolicy.from_file("/tmp/policy.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ValueError(f"Policy file not found: {config_path}")
        raw = _read_policy_toml(path)
        extra_globals_raw = raw.get("extra_globals", {})
        if not isinstance(extra_globals_raw, dict):
            raise ValueError("'extra_globals' must be a TOML table")
        allowed_builtins = raw.get("allowed_builtins")
        allowed_modules = raw.get("allowed_modules")
        preloaded_modules = raw.get("preloaded_modules")
        return cls(
            timeout_ms=int(raw.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            timer_cap_ms=int(raw.get("timer_cap_ms", DEFAULT_TIMER_CAP_MS)),
            history_capacity=int(raw.get("history_capacity", DEFAULT_HISTORY_CAPACITY)),
            max_output_lines=int(raw.get("max_output_lines", DEFAULT_MAX_OUTPUT_LINES)),
            queue_timeout_ms=int(raw.get("queue_timeout_ms", DEFAULT_QUEUE_TIMEOUT_MS)),
            render_max_depth=int(raw.get("render_max_depth", DEFAULT_RENDER_MAX_DEPTH)),
            render_max_length=int(raw.get("render_max_length", DEFAULT_RENDER_MAX_LENGTH)),
            render_max_string=int(raw.get("render_max_string", DEFAULT_RENDER_MAX_STRING)),
            render_width=int(raw.get("render_width", DEFAULT_RENDER_WIDTH)),
            allowed_builtins=(
                DEFAULT_ALLOWED_BUILTINS.copy()
                if allowed_builtins is None
                else _list_of_str(allowed_builtins, "allowed_builtins")
            ),
            allowed_modules=(
                DEFAULT_ALLOWED_MODULES.copy()
                if allowed_modules is None
                else _list_of_str(allowed_modules, "allowed_modules")
            ),
            preloaded_modules=_resolve_preloaded(preloaded_modules, allowed_modules),
            extra_globals=extra_globals_raw,
            config_path=config_path,
        )
