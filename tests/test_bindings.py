from __future__ import annotations

import asyncio
import math
import random

import pytest

from script_sandbox import OutputLevel, SandboxPolicy
from script_sandbox.execution.bindings import (
    ConsoleNamespace,
    IsolatedRandom,
    ReadOnlyModule,
    build_bindings,
)
from script_sandbox.execution.interceptor import OutputInterceptor
from script_sandbox.execution.render import Renderer
from script_sandbox.execution.timers import TimerRegistry


def _bindings(policy: SandboxPolicy | None = None, interceptor: OutputInterceptor | None = None):
    policy = policy or SandboxPolicy()
    return build_bindings(
        policy,
        interceptor=interceptor or OutputInterceptor(),
        timers=TimerRegistry(cap_ms=policy.timer_cap_ms, on_error=lambda exc: None),
        renderer=Renderer.from_policy(policy),
    )


def test_expected_names_are_bound() -> None:
    bindings = _bindings()

    for name in (
        "log", "info", "warn", "error", "console", "math", "random",
        "set_timeout", "set_interval", "clear_timeout", "clear_interval", "sleep",
    ):
        assert name in bindings


def test_restricted_builtins() -> None:
    builtins_map = _bindings().builtins

    assert "len" in builtins_map
    assert "__build_class__" in builtins_map
    assert "open" not in builtins_map
    assert "eval" not in builtins_map
    assert builtins_map["print"] is not print


def test_namespace_is_fresh_each_call() -> None:
    bindings = _bindings()
    first = bindings.namespace()
    first["__builtins__"]["len"] = None
    second = bindings.namespace()

    assert second["__builtins__"]["len"] is len
    assert first is not second


def test_separate_bindings_do_not_share_functions() -> None:
    assert _bindings()["log"] is not _bindings()["log"]


def test_diagnostics_write_to_interceptor() -> None:
    interceptor = OutputInterceptor()
    bindings = _bindings(interceptor=interceptor)
    with interceptor.capture() as handle:
        bindings["log"]("total:", 3)
        bindings["console"].error({"a": 1})
        bindings.builtins["print"]("x", "y", sep=",")

    lines = handle.release()
    assert [(line.level, line.rendered) for line in lines] == [
        (OutputLevel.LOG, "total: 3"),
        (OutputLevel.ERROR, "{'a': 1}"),
        (OutputLevel.LOG, "x,y"),
    ]


def test_console_is_read_only() -> None:
    console = _bindings()["console"]

    assert isinstance(console, ConsoleNamespace)
    with pytest.raises(AttributeError):
        console.log = None


def test_read_only_module_blocks_mutation_and_hides_target() -> None:
    proxy = ReadOnlyModule(math)

    assert proxy.sqrt(16) == 4.0
    assert proxy.pi == math.pi
    with pytest.raises(AttributeError):
        proxy.pi = 3
    with pytest.raises(AttributeError):
        del proxy.pi
    with pytest.raises(AttributeError):
        proxy._module


def test_isolated_random_does_not_touch_global_generator() -> None:
    random.seed(123)
    expected = random.random()
    random.seed(123)

    isolated = IsolatedRandom(random.Random())
    isolated.seed(1)
    isolated.random()

    assert random.random() == expected


def test_isolated_random_is_reproducible() -> None:
    first = IsolatedRandom(random.Random())
    second = IsolatedRandom(random.Random())
    first.seed(7)
    second.seed(7)

    assert [first.randint(1, 100) for _ in range(5)] == [second.randint(1, 100) for _ in range(5)]


def test_import_guard() -> None:
    guarded_import = _bindings().builtins["__import__"]

    assert guarded_import("json").dumps([1]) == "[1]"
    assert guarded_import("collections", fromlist=("Counter",)).Counter("aab")["a"] == 2
    with pytest.raises(ImportError, match="Import 'os' is not allowed in the sandbox"):
        guarded_import("os")
    with pytest.raises(ImportError):
        guarded_import("json", level=1)


def test_submodule_import_returns_proxies() -> None:
    guarded_import = _bindings().builtins["__import__"]

    root = guarded_import("collections.abc")
    sub = guarded_import("collections.abc", fromlist=("Mapping",))

    assert isinstance(root, ReadOnlyModule)
    assert isinstance(root.abc, ReadOnlyModule)
    assert sub.Mapping is not None


def test_extra_globals_are_deep_copied() -> None:
    shared = {"items": [1, 2]}
    policy = SandboxPolicy(extra_globals={"data": shared})

    bound = _bindings(policy)["data"]
    bound["items"].append(3)

    assert shared == {"items": [1, 2]}


def test_sleep_is_awaitable() -> None:
    async def scenario():
        await _bindings()["sleep"](1)

    asyncio.run(scenario())


def test_private_module_attributes_are_refused() -> None:
    with pytest.raises(AttributeError, match="not accessible"):
        IsolatedRandom(random.Random(), frozenset({"random"}))._os
    with pytest.raises(AttributeError, match="not accessible"):
        ReadOnlyModule(math).__dict__
    assert ReadOnlyModule(math).__name__ == "math"


def test_disallowed_submodule_attributes_are_refused() -> None:
    import dataclasses

    proxy = ReadOnlyModule(dataclasses, frozenset({"dataclasses"}))

    with pytest.raises(AttributeError, match="not allowed in the sandbox"):
        proxy.sys
    assert proxy.dataclass is dataclasses.dataclass


def test_dir_lists_public_names_only() -> None:
    names = dir(ReadOnlyModule(math))

    assert "sqrt" in names
    assert not any(name.startswith("_") for name in names)
