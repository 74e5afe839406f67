from __future__ import annotations

from script_sandbox.execution.render import Renderer

RENDERER = Renderer(max_depth=3, max_length=5, max_string=20, width=80)


def test_strings_and_primitives() -> None:
    assert RENDERER.render("hello") == "hello"
    assert RENDERER.render(3) == "3"
    assert RENDERER.render(2.5) == "2.5"
    assert RENDERER.render(None) == "None"
    assert RENDERER.render(True) == "True"


def test_containers_use_repr_style() -> None:
    assert RENDERER.render({"a": [1, 2]}) == "{'a': [1, 2]}"


def test_self_reference_does_not_recurse() -> None:
    items: list = [1]
    items.append(items)

    assert "..." in RENDERER.render(items)


def test_long_containers_are_abbreviated() -> None:
    assert "... +45" in RENDERER.render(list(range(50)))


def test_broken_repr_is_reported_inline() -> None:
    class Broken:
        def __repr__(self) -> str:
            raise RuntimeError("nope")

    assert "nope" in RENDERER.render(Broken())


def test_render_args_joins_with_separator() -> None:
    assert RENDERER.render_args(["a", 1, None]) == "a 1 None"
    assert RENDERER.render_args(["a", "b"], sep="|") == "a|b"


def test_long_top_level_strings_are_clipped() -> None:
    assert RENDERER.render("x" * 25) == "x" * 20 + "...+5"


def test_oversized_int_degrades_instead_of_raising() -> None:
    rendered = RENDERER.render(10**5000)

    assert rendered.startswith("<unrenderable int:")
