from __future__ import annotations

import ast
import linecache
from dataclasses import dataclass
from types import CodeType, FunctionType
from typing import Any, Callable, Coroutine, Iterator

SANDBOX_ENTRYPOINT = "__sandbox_main__"

_TEMPLATE = f"async def {SANDBOX_ENTRYPOINT}():\n    pass\n"
_SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)


def sandbox_filename(request_id: str) -> str:
    """Return the pseudo filename that script code is compiled under.

    Example:
        ```python
        filename = sandbox_filename("abc123")
        ```
    """
    return f"<sandbox:{request_id}>"


def _top_level_nodes(nodes: list[ast.stmt]) -> Iterator[ast.AST]:
    """Walk statements without descending into nested function or class scopes.

    Example:
        ```python
        yields = [n for n in _top_level_nodes(tree.body) if isinstance(n, ast.Yield)]
        ```
    """
    stack: list[ast.AST] = list(nodes)
    while stack:
        node = stack.pop()
        yield node
        for child in ast.iter_child_nodes(node):
            if not isinstance(child, _SCOPE_NODES):
                stack.append(child)


def format_syntax_error(exc: SyntaxError) -> str:
    """Render a compile error as `message (line N)`.

    Example:
        ```python
        text = format_syntax_error(SyntaxError("invalid syntax"))
        ```
    """
    message = exc.msg or "invalid syntax"
    if exc.lineno:
        return f"{message} (line {exc.lineno})"
    return message


@dataclass(frozen=True, slots=True)
class CompiledScript:
    """Script source compiled into the body of an `async def` entry point.

    Example:
        ```python
        compiled = compile_script("return 1", "<sandbox:abc>")
        main = compiled.bind({"__builtins__": {}})
        ```
    """

    source: str
    filename: str
    code: CodeType

    def bind(self, namespace: dict[str, Any]) -> Callable[[], Coroutine[Any, Any, Any]]:
        """Return the entry point with `namespace` as its only global scope.

        Example:
            ```python
            main = compiled.bind(bindings.namespace())
            value = await main()
            ```
        """
        return FunctionType(self.code, namespace, SANDBOX_ENTRYPOINT)

    def register_source(self) -> None:
        """Make script lines available to tracebacks.

        Example:
            ```python
            compiled.register_source()
            ```
        """
        lines = self.source.splitlines(keepends=True)
        linecache.cache[self.filename] = (len(self.source), None, lines, self.filename)

    def forget_source(self) -> None:
        """Remove the lines registered by `register_source`.

        Example:
            ```python
            compiled.forget_source()
            ```
        """
        linecache.cache.pop(self.filename, None)


def compile_script(source: str, filename: str) -> CompiledScript:
    """Compile script text so top-level `return` and `await` are allowed.

    The statements become the body of an `async def`; line numbers are kept,
    so errors point at the user's own lines. Raises `SyntaxError`.

    Example:
        ```python
        compiled = compile_script("log(1); log(2); return 3", "<sandbox:abc>")
        ```
    """
    tree = ast.parse(source, filename=filename, mode="exec")
    for node in _top_level_nodes(tree.body):
        if isinstance(node, (ast.Yield, ast.YieldFrom)):
            raise SyntaxError(
                "'yield' outside function",
                (filename, node.lineno, node.col_offset + 1, None),
            )
    module = ast.parse(_TEMPLATE, filename=filename, mode="exec")
    entry = module.body[0]
    assert isinstance(entry, ast.AsyncFunctionDef)
    if tree.body:
        entry.body = tree.body
    ast.fix_missing_locations(module)
    module_code = compile(module, filename, "exec", dont_inherit=True)
    for const in module_code.co_consts:
        if isinstance(const, CodeType) and const.co_name == SANDBOX_ENTRYPOINT:
            return CompiledScript(source=source, filename=filename, code=const)
    raise SyntaxError("script entry point could not be compiled", (filename, 1, 1, None))
