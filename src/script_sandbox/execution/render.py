from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from rich.pretty import pretty_repr

from ..policy import SandboxPolicy

_PRIMITIVES = (bool, int, float, complex, bytes)


@dataclass(frozen=True, slots=True)
class Renderer:
    """Turn script values into display text with depth, length and cycle limits.

    Strings are shown as-is up to `max_string`, other primitives with `str`, and everything
    else through `rich.pretty.pretty_repr`, which prints self-references as
    `...` instead of recursing.

    Example:
        ```python
        renderer = Renderer(max_depth=3, max_length=10, max_string=200, width=80)
        text = renderer.render({"a": [1, 2]})
        ```
    """

    max_depth: int
    max_length: int
    max_string: int
    width: int = 80

    @classmethod
    def from_policy(cls, policy: SandboxPolicy) -> "Renderer":
        """Build a renderer from the policy's render limits.

        Example:
            ```python
            renderer = Renderer.from_policy(SandboxPolicy())
            ```
        """
        return cls(
            max_depth=policy.render_max_depth,
            max_length=policy.render_max_length,
            max_string=policy.render_max_string,
            width=policy.render_width,
        )

    def render(self, value: Any) -> str:
        """Render a single value; never raises for ordinary exceptions.

        Strings longer than `max_string` are cut and suffixed with `...+N`,
        where N is the number of dropped characters.

        Example:
            ```python
            assert renderer.render(3) == "3"
            ```
        """
        try:
            if isinstance(value, str):
                return self._clip(str(value))
            if value is None or isinstance(value, _PRIMITIVES):
                return self._clip(str(value))
            return pretty_repr(
                value,
                max_width=self.width,
                max_depth=self.max_depth,
                max_length=self.max_length,
                max_string=self.max_string,
            )
        except Exception as exc:
            return f"<unrenderable {type(value).__name__}: {exc}>"

    def _clip(self, text: str) -> str:
        """Cut `text` to `max_string` characters.

        Example:
            ```python
            assert Renderer(6, 100, 3)._clip("abcdef") == "abc...+3"
            ```
        """
        if len(text) <= self.max_string:
            return text
        return f"{text[: self.max_string]}...+{len(text) - self.max_string}"

    def render_args(self, args: Iterable[Any], sep: str = " ") -> str:
        """Render and join a diagnostic call's positional arguments.

        Example:
            ```python
            assert renderer.render_args(["a", 1]) == "a 1"
            ```
        """
        return sep.join(self.render(arg) for arg in args)
