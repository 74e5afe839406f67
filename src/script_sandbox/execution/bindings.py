from __future__ import annotations

import builtins
import copy
import importlib
import random
from collections.abc import Mapping
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Iterator

from ..policy import SandboxPolicy
from .interceptor import OutputInterceptor
from .render import Renderer
from .timers import TimerRegistry
from .types import OutputLevel

SANDBOX_MODULE_NAME = "__sandbox__"

# Needed by every `class` statement; not user-configurable.
_REQUIRED_BUILTINS = ("__build_class__",)

_DIAGNOSTIC_NAMES = {
    "log": OutputLevel.LOG,
    "info": OutputLevel.INFO,
    "warn": OutputLevel.WARN,
    "error": OutputLevel.ERROR,
}


# Dunder reads scripts may make on a module proxy; everything else starting
# with "_" is refused.
_PUBLIC_DUNDERS = frozenset({"__name__", "__doc__"})


def _module_root(module: ModuleType) -> str:
    """Return the top-level package name of `module`.

    Example:
        ```python
        assert _module_root(collections.abc) == "collections"
        ```
    """
    return str(getattr(module, "__name__", "")).split(".")[0]


class ReadOnlyModule:
    """Attribute proxy that lets scripts use a module without mutating it.

    Private and dunder attributes are refused, and a sub-module is only
    handed out (wrapped again) when its root package is in `allowed_modules`.

    Example:
        ```python
        math_proxy = ReadOnlyModule(math, frozenset({"math"}))
        math_proxy.sqrt(4)
        ```
    """

    __slots__ = ("_module", "_allowed")

    def __init__(self, module: Any, allowed_modules: frozenset[str] = frozenset()) -> None:
        """Wrap `module`; `allowed_modules` bounds which sub-modules are reachable.

        Example:
            ```python
            proxy = ReadOnlyModule(json, frozenset({"json"}))
            ```
        """
        object.__setattr__(self, "_module", module)
        object.__setattr__(self, "_allowed", frozenset(allowed_modules))

    def __getattribute__(self, name: str) -> Any:
        """Forward public attribute reads to the module, wrapping allowed sub-modules.

        Example:
            ```python
            proxy.pi
            ```
        """
        module = object.__getattribute__(self, "_module")
        module_name = getattr(module, "__name__", "?")
        if name.startswith("_") and name not in _PUBLIC_DUNDERS:
            raise AttributeError(f"'{module_name}.{name}' is not accessible inside the sandbox")
        value = getattr(module, name)
        if isinstance(value, ModuleType):
            allowed = object.__getattribute__(self, "_allowed")
            if _module_root(value) not in allowed:
                raise AttributeError(
                    f"'{module_name}.{name}' refers to module '{value.__name__}', "
                    "which is not allowed in the sandbox"
                )
            return ReadOnlyModule(value, allowed)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        """Refuse attribute assignment.

        Example:
            ```python
            proxy.pi = 3  # raises AttributeError
            ```
        """
        raise AttributeError(f"cannot set '{name}': module is read-only inside the sandbox")

    def __delattr__(self, name: str) -> None:
        """Refuse attribute deletion.

        Example:
            ```python
            del proxy.pi  # raises AttributeError
            ```
        """
        raise AttributeError(f"cannot delete '{name}': module is read-only inside the sandbox")

    def __dir__(self) -> list[str]:
        """List the wrapped module's public attributes.

        Example:
            ```python
            names = dir(proxy)
            ```
        """
        return [name for name in dir(object.__getattribute__(self, "_module")) if not name.startswith("_")]

    def __repr__(self) -> str:
        """Show which module is wrapped.

        Example:
            ```python
            repr(proxy)
            ```
        """
        module = object.__getattribute__(self, "_module")
        return f"<module '{getattr(module, '__name__', '?')}' (read-only)>"


class IsolatedRandom(ReadOnlyModule):
    """`random` module stand-in backed by a private `random.Random` generator.

    Seeding or drawing numbers in one run never affects another run.

    Example:
        ```python
        rng = IsolatedRandom(random.Random())
        rng.seed(1)
        rng.randint(1, 6)
        ```
    """

    __slots__ = ("_rng",)

    def __init__(self, rng: random.Random, allowed_modules: frozenset[str] = frozenset()) -> None:
        """Wrap the real `random` module and route generator methods to `rng`.

        Example:
            ```python
            rng = IsolatedRandom(random.Random(42), frozenset({"random"}))
            ```
        """
        super().__init__(random, allowed_modules)
        object.__setattr__(self, "_rng", rng)

    def __getattribute__(self, name: str) -> Any:
        """Prefer the private generator's public methods over module functions.

        Example:
            ```python
            rng.random()
            ```
        """
        rng = object.__getattribute__(self, "_rng")
        if not name.startswith("_") and hasattr(rng, name):
            return getattr(rng, name)
        return ReadOnlyModule.__getattribute__(self, name)

    def __repr__(self) -> str:
        """Describe the proxy.

        Example:
            ```python
            repr(rng)
            ```
        """
        return "<module 'random' (isolated)>"


class ConsoleNamespace:
    """Read-only `console` object exposing the four diagnostic functions.

    Example:
        ```python
        console = ConsoleNamespace(diagnostics)
        console.log("hi")
        ```
    """

    __slots__ = ("log", "info", "warn", "error")

    def __init__(self, diagnostics: Mapping[str, Callable[..., None]]) -> None:
        """Bind the diagnostic functions as attributes.

        Example:
            ```python
            console = ConsoleNamespace({"log": log, "info": info, "warn": warn, "error": error})
            ```
        """
        for name in self.__slots__:
            object.__setattr__(self, name, diagnostics[name])

    def __setattr__(self, name: str, value: Any) -> None:
        """Refuse attribute assignment.

        Example:
            ```python
            console.log = None  # raises AttributeError
            ```
        """
        raise AttributeError("console is read-only inside the sandbox")

    def __delattr__(self, name: str) -> None:
        """Refuse attribute deletion.

        Example:
            ```python
            del console.log  # raises AttributeError
            ```
        """
        raise AttributeError("console is read-only inside the sandbox")

    def __repr__(self) -> str:
        """Describe the namespace.

        Example:
            ```python
            repr(console)
            ```
        """
        return "<console>"


class SafeBindingSet(Mapping[str, Any]):
    """Allow-listed names visible to one script run.

    Example:
        ```python
        bindings = build_bindings(policy, interceptor=interceptor, timers=timers, renderer=renderer)
        main = compiled.bind(bindings.namespace())
        ```
    """

    __slots__ = ("_bindings", "_builtins")

    def __init__(self, bindings: dict[str, Any], builtins_map: dict[str, Any]) -> None:
        """Store the global bindings and the restricted builtins.

        Example:
            ```python
            bindings = SafeBindingSet({"log": log}, {"len": len})
            ```
        """
        self._bindings = bindings
        self._builtins = builtins_map

    def __getitem__(self, name: str) -> Any:
        """Return the value bound to `name`.

        Example:
            ```python
            log = bindings["log"]
            ```
        """
        return self._bindings[name]

    def __iter__(self) -> Iterator[str]:
        """Iterate over bound names.

        Example:
            ```python
            names = sorted(bindings)
            ```
        """
        return iter(self._bindings)

    def __len__(self) -> int:
        """Return the number of bound names.

        Example:
            ```python
            count = len(bindings)
            ```
        """
        return len(self._bindings)

    @property
    def builtins(self) -> Mapping[str, Any]:
        """Return a read-only view of the restricted builtins.

        Example:
            ```python
            assert "open" not in bindings.builtins
            ```
        """
        return MappingProxyType(self._builtins)

    def namespace(self) -> dict[str, Any]:
        """Return a fresh globals dict for executing script code.

        Example:
            ```python
            globals_dict = bindings.namespace()
            ```
        """
        namespace: dict[str, Any] = {
            "__builtins__": dict(self._builtins),
            "__name__": SANDBOX_MODULE_NAME,
        }
        namespace.update(self._bindings)
        return namespace


def _make_diagnostic(
    level: OutputLevel,
    interceptor: OutputInterceptor,
    renderer: Renderer,
) -> Callable[..., None]:
    """Build a diagnostic function that forwards rendered lines to the interceptor.

    Example:
        ```python
        log = _make_diagnostic(OutputLevel.LOG, interceptor, renderer)
        log("total:", 3)
        ```
    """

    def emit(*args: Any, sep: Any = " ", end: Any = None, **_ignored: Any) -> None:
        """Render `args` joined by `sep` and capture them as one line.

        Example:
            ```python
            emit("a", 1, sep=", ")
            ```
        """
        separator = " " if sep is None else str(sep)
        interceptor.write(level, renderer.render_args(args, separator))

    emit.__name__ = level.value
    emit.__qualname__ = level.value
    return emit


def _load_module(name: str, rng: random.Random, allowed_modules: frozenset[str]) -> Any:
    """Import an allowed module and wrap it for script use.

    Example:
        ```python
        proxy = _load_module("math", random.Random(), frozenset({"math"}))
        ```
    """
    if name == "random":
        return IsolatedRandom(rng, allowed_modules)
    return ReadOnlyModule(importlib.import_module(name), allowed_modules)


def _safe_import_factory(allowed_modules: frozenset[str], rng: random.Random) -> Callable[..., Any]:
    """Build the `__import__` replacement that only admits allow-listed modules.

    Example:
        ```python
        guarded = _safe_import_factory(frozenset({"math"}), random.Random())
        math_proxy = guarded("math")
        ```
    """

    def _safe_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        """Import `name` if its root package is allowed, returning a read-only proxy.

        Example:
            ```python
            _safe_import("collections", fromlist=("Counter",))
            ```
        """
        if level:
            raise ImportError("Relative imports are not available inside the sandbox")
        root = name.split(".")[0]
        if root not in allowed_modules:
            raise ImportError(f"Import '{name}' is not allowed in the sandbox")
        if name != root:
            submodule = importlib.import_module(name)
            if fromlist:
                return ReadOnlyModule(submodule, allowed_modules)
        return _load_module(root, rng, allowed_modules)

    return _safe_import


def _build_safe_builtins(
    allowed_builtins: list[str],
    safe_import: Callable[..., Any],
    print_function: Callable[..., None],
) -> dict[str, Any]:
    """Copy the allow-listed builtins into a new dict and add sandbox hooks.

    Example:
        ```python
        safe = _build_safe_builtins(["len"], guarded_import, log)
        ```
    """
    builtins_obj = vars(builtins)
    safe = {
        name: builtins_obj[name]
        for name in (*allowed_builtins, *_REQUIRED_BUILTINS)
        if name in builtins_obj
    }
    safe["__import__"] = safe_import
    safe["print"] = print_function
    return safe


def build_bindings(
    policy: SandboxPolicy,
    *,
    interceptor: OutputInterceptor,
    timers: TimerRegistry,
    renderer: Renderer,
    seed: Any = None,
) -> SafeBindingSet:
    """Build the allow-listed binding set for one request.

    Each call creates new function objects, a new builtins dict, a new random
    generator and deep copies of `extra_globals`, so nothing one script does
    to its bindings is visible to another run.

    Example:
        ```python
        bindings = build_bindings(
            SandboxPolicy(),
            interceptor=GLOBAL_OUTPUT_INTERCEPTOR,
            timers=TimerRegistry(cap_ms=5000, on_error=errors.append),
            renderer=Renderer.from_policy(SandboxPolicy()),
        )
        ```
    """
    rng = random.Random(seed)
    diagnostics = {
        name: _make_diagnostic(level, interceptor, renderer)
        for name, level in _DIAGNOSTIC_NAMES.items()
    }
    allowed_modules = frozenset(policy.allowed_modules)
    safe_import = _safe_import_factory(allowed_modules, rng)

    bindings: dict[str, Any] = copy.deepcopy(policy.extra_globals)
    for name in policy.preloaded_modules:
        bindings[name] = _load_module(name, rng, allowed_modules)
    bindings.update(diagnostics)
    bindings["console"] = ConsoleNamespace(diagnostics)
    bindings["set_timeout"] = timers.set_timeout
    bindings["set_interval"] = timers.set_interval
    bindings["clear_timeout"] = timers.clear
    bindings["clear_interval"] = timers.clear
    bindings["sleep"] = timers.sleep

    safe_builtins = _build_safe_builtins(
        policy.allowed_builtins,
        safe_import,
        diagnostics["log"],
    )
    return SafeBindingSet(bindings, safe_builtins)
