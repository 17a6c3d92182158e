"""
Shared pieces for block code generators.

Each block type implements `BlockCodegen.emit(config, ctx)` and returns a
`Fragment`: the statements that bind the block's output, plus any
module-level helpers they need. The compiler owns indentation, tracing and
branch gating; fragments only deal with their own binding.
"""

from __future__ import annotations

import ast
import json
import textwrap
from dataclasses import dataclass, field
from typing import Any

from flowshapr.models.blocks import BlockInstance, Diagnostic
from flowshapr.services.templates import build_template_bindings, extract_template_variables

INDENT = "    "

# Names a user snippet may not touch; the generated module runs inside the
# executor process.
_FORBIDDEN_NAMES = {
    "eval", "exec", "compile", "__import__", "open", "globals", "locals",
    "vars", "getattr", "setattr", "delattr", "breakpoint",
}


@dataclass
class Fragment:
    lines: list[str]
    # Expression recorded in the trace; defaults to the block's binding.
    record: str | None = None
    # Return the binding right after this block runs (outputs, interrupts).
    terminal: bool = False
    helpers: list[str] = field(default_factory=list)
    # Extra names this block binds, with their value when the block is skipped.
    extra_bindings: dict[str, str] = field(default_factory=dict)


@dataclass
class EmitContext:
    block: BlockInstance
    binding: str
    input_expr: str
    tools: list[BlockInstance] = field(default_factory=list)
    scope: dict[str, str] = field(default_factory=dict)
    imports: set[str] = field(default_factory=set)
    dependencies: set[str] = field(default_factory=set)

    @property
    def helper_prefix(self) -> str:
        return f"_{self.block.block_type}_{self.binding}"

    def template(self, text: str) -> str:
        """Python expression rendering `text` with its placeholders bound."""
        if not extract_template_variables(text):
            return repr(text)
        bindings = build_template_bindings(text, self.scope)
        self.imports.add("from flowshapr.runtime.context import render_template")
        values = ", ".join(f"{name!r}: {expr}" for name, expr in bindings.items())
        return f"render_template({text!r}, {{{values}}})"


class BlockCodegen:
    """Base code generator; subclasses override `emit` and usually `validate`."""

    imports: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ("flowshapr",)
    # Tool blocks attach to agents instead of running in the main chain.
    in_main_chain: bool = True

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        return []

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        raise NotImplementedError

    def get_imports(self, config: dict[str, Any]) -> list[str]:
        return list(self.imports)

    def get_dependencies(self, config: dict[str, Any]) -> list[str]:
        return list(self.dependencies)


# ---------------------------------------------------------------------------
# Helpers for generators
# ---------------------------------------------------------------------------


def indent(lines: list[str], level: int = 1) -> list[str]:
    pad = INDENT * level
    return [pad + line if line else line for line in lines]


def snippet_lines(code: str) -> list[str]:
    """Split a user snippet into lines with common leading whitespace removed."""
    body = textwrap.dedent(code).strip("\n")
    return body.splitlines() or ["pass"]


def check_snippet(code: str, field_name: str, mode: str = "exec") -> list[Diagnostic]:
    """Syntax and safety check for user-authored Python snippets."""
    source = code if mode == "eval" else "\n".join(snippet_lines(code))
    try:
        tree = ast.parse(source, mode=mode)
    except SyntaxError as exc:
        return [Diagnostic(
            message=f"Invalid Python syntax: {exc.msg} (line {exc.lineno})",
            field=field_name,
        )]

    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            return [Diagnostic(message="Imports are not allowed in block code", field=field_name)]
        if isinstance(node, ast.Name) and node.id in _FORBIDDEN_NAMES:
            return [Diagnostic(message="Code contains potentially unsafe calls", field=field_name)]
        if isinstance(node, ast.Attribute) and node.attr.startswith("__"):
            return [Diagnostic(message="Code contains potentially unsafe attribute access", field=field_name)]
    return []


def check_json(value: Any, field_name: str, label: str) -> list[Diagnostic]:
    if value is None or value == "" or isinstance(value, (dict, list)):
        return []
    try:
        json.loads(value)
    except (TypeError, ValueError):
        return [Diagnostic(message=f"Invalid JSON in {label}", field=field_name)]
    return []


def parse_json_field(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def snippet_function(name: str, code: str, param: str, *, expression: bool = False) -> str:
    """Wrap a user snippet in a module-level function taking `param`."""
    if expression:
        body = [f"return ({code.strip()})"]
    else:
        body = snippet_lines(code)
    return "\n".join([f"def {name}({param}):", *indent(body)])
