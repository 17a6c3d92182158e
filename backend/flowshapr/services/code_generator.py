"""
Flow compiler — turns an editor graph into the source of a runnable Python module.

Pipeline: Validate → Split tool edges → Toposort → Emit blocks → Assemble

The emitted module imports only `flowshapr.runtime` and exposes
`ENTRY_POINT`, `FLOW_VARIABLES` and `async def run_flow(input, context=None)`.
Each block runs behind an activation flag, so blocks on an untaken
condition branch (or with no incoming edge at all) never execute.
"""

from __future__ import annotations

import heapq
import keyword
import logging
import re
from collections import defaultdict
from typing import Any, Iterable

import flowshapr.blocks  # noqa: F401  (registers the built-in block types)
from flowshapr.blocks.base import INDENT, EmitContext, Fragment, indent
from flowshapr.blocks.condition import FALSE_HANDLE, TRUE_HANDLE, branch_binding
from flowshapr.models.block_registry import BlockRegistry, block_registry
from flowshapr.models.blocks import (
    BlockInstance,
    CompiledProgram,
    Diagnostic,
    Edge,
    FlowVariable,
    ValidationReport,
)
from flowshapr.services import flow_validator
from flowshapr.services.templates import UnresolvedVariableError
from flowshapr.services.variable_resolver import entry_parameter_shape, resolve_variables

logger = logging.getLogger(__name__)

ENTRY_POINT = "run_flow"
RUNTIME_IMPORT = "from flowshapr.runtime.context import FlowContext"
FIRST_ACTIVE_IMPORT = "from flowshapr.runtime.context import first_active"


class CompilationError(Exception):
    """Raised when compilation fails with structured diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        messages = "; ".join(d.message for d in diagnostics)
        super().__init__(f"Compilation failed: {messages}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_flow(
    blocks: Iterable[BlockInstance | dict[str, Any]],
    edges: Iterable[Edge | dict[str, Any]],
) -> ValidationReport:
    return flow_validator.validate(_as_blocks(blocks), _as_edges(edges))


def compile_flow(
    blocks: Iterable[BlockInstance | dict[str, Any]],
    edges: Iterable[Edge | dict[str, Any]],
    variables: Iterable[FlowVariable | dict[str, Any]] | None = None,
    *,
    registry: BlockRegistry = block_registry,
) -> CompiledProgram:
    """
    Compile a flow graph into Python source.

    Any validation error, cycle, unresolved template variable or emission
    failure yields `is_valid=False` with every error collected and no code.
    """
    block_list = _as_blocks(blocks)
    edge_list = _as_edges(edges)
    manual = [v if isinstance(v, FlowVariable) else FlowVariable.model_validate(v) for v in variables or ()]

    report = flow_validator.validate(block_list, edge_list, registry)
    if not report.is_valid:
        logger.info("Flow compilation rejected: %d validation error(s)", len(report.errors))
        return CompiledProgram(is_valid=False, errors=report.errors, warnings=report.warnings)

    try:
        program = _Emitter(block_list, edge_list, resolve_variables(block_list, manual), registry).emit()
    except CompilationError as exc:
        logger.info("Flow compilation failed: %s", exc)
        return CompiledProgram(is_valid=False, errors=exc.diagnostics, warnings=report.warnings)

    return program.model_copy(update={"warnings": report.warnings})


def _as_blocks(blocks: Iterable[BlockInstance | dict[str, Any]]) -> list[BlockInstance]:
    return [b if isinstance(b, BlockInstance) else BlockInstance.model_validate(b) for b in blocks]


def _as_edges(edges: Iterable[Edge | dict[str, Any]]) -> list[Edge]:
    return [e if isinstance(e, Edge) else Edge.model_validate(e) for e in edges]


# ---------------------------------------------------------------------------
# Toposort (Kahn's algorithm, ties broken by declaration order)
# ---------------------------------------------------------------------------


def toposort(block_ids: list[str], edges: list[Edge]) -> list[str]:
    position = {block_id: i for i, block_id in enumerate(block_ids)}
    in_degree: dict[str, int] = {block_id: 0 for block_id in block_ids}
    adjacency: dict[str, list[str]] = defaultdict(list)

    for edge in edges:
        if edge.source in position and edge.target in position:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    ready = [(position[b], b) for b, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, block_id = heapq.heappop(ready)
        order.append(block_id)
        for neighbor in adjacency[block_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                heapq.heappush(ready, (position[neighbor], neighbor))

    if len(order) != len(block_ids):
        cycle_blocks = [b for b in block_ids if in_degree[b] > 0]
        raise CompilationError([
            Diagnostic(
                message=f"Cycle detected involving blocks: {', '.join(cycle_blocks)}",
                path=cycle_blocks,
            )
        ])
    return order


# ---------------------------------------------------------------------------
# Emission
# ---------------------------------------------------------------------------


def binding_name(block_id: str, taken: set[str]) -> str:
    base = re.sub(r"\W", "_", block_id).strip("_") or "block"
    if base[0].isdigit() or keyword.iskeyword(base):
        base = f"b_{base}"
    name = f"{base}_out"
    suffix = 2
    while name in taken:
        name = f"{base}_{suffix}_out"
        suffix += 1
    taken.add(name)
    return name


class _Emitter:
    def __init__(
        self,
        blocks: list[BlockInstance],
        edges: list[Edge],
        variables: list[FlowVariable],
        registry: BlockRegistry,
    ):
        self.registry = registry
        self.variables = variables
        self.blocks = {b.id: b for b in blocks}
        self.codegens = {b.id: registry.get(b.block_type).codegen for b in blocks}

        # Tool blocks attach to agents instead of running in the main chain.
        # The editor may draw the edge from either end.
        self.tools_by_target: dict[str, list[BlockInstance]] = defaultdict(list)
        self.main_edges: list[Edge] = []
        for edge in edges:
            if not self.codegens[edge.source].in_main_chain:
                self._attach_tool(edge.target, edge.source)
            elif not self.codegens[edge.target].in_main_chain:
                self._attach_tool(edge.source, edge.target)
            else:
                self.main_edges.append(edge)

        self.main_ids = [b.id for b in blocks if self.codegens[b.id].in_main_chain]
        self.incoming: dict[str, list[Edge]] = defaultdict(list)
        for edge in self.main_edges:
            self.incoming[edge.target].append(edge)

        taken: set[str] = set()
        self.bindings = {block_id: binding_name(block_id, taken) for block_id in self.main_ids}

        self.imports: set[str] = {RUNTIME_IMPORT}
        self.dependencies: set[str] = set()

    def _attach_tool(self, agent_id: str, tool_id: str) -> None:
        attached = self.tools_by_target[agent_id]
        if all(t.id != tool_id for t in attached):
            attached.append(self.blocks[tool_id])

    def emit(self) -> CompiledProgram:
        order = toposort(self.main_ids, self.main_edges)
        errors: list[Diagnostic] = []
        helpers: list[str] = []
        initial: dict[str, str] = {self.bindings[b]: "None" for b in order}
        body: list[str] = []
        scope_blocks: dict[str, str] = {}

        for block_id in order:
            block = self.blocks[block_id]
            codegen = self.codegens[block_id]
            ctx = EmitContext(
                block=block,
                binding=self.bindings[block_id],
                input_expr=self._input_expr(block),
                tools=list(self.tools_by_target.get(block_id, [])),
                scope=self._scope(block, scope_blocks),
                imports=self.imports,
                dependencies=self.dependencies,
            )
            try:
                fragment = codegen.emit(block.config, ctx)
            except UnresolvedVariableError as exc:
                errors.append(Diagnostic(
                    message=f"Unresolved variable(s) in block '{block_id}': {', '.join(exc.names)}",
                    block_id=block_id,
                ))
                continue
            except Exception as exc:
                logger.exception("Code generation failed for block '%s'", block_id)
                errors.append(Diagnostic(
                    message=f"Code generation failed for block '{block_id}': {exc}",
                    block_id=block_id,
                ))
                continue

            self.imports.update(codegen.get_imports(block.config))
            self.dependencies.update(codegen.get_dependencies(block.config))
            helpers.extend(fragment.helpers)
            initial.update(fragment.extra_bindings)
            body.extend(self._block_lines(block, ctx, fragment))
            scope_blocks[block_id] = ctx.binding

        if errors:
            raise CompilationError(errors)

        code = self._assemble(helpers, initial, body)
        logger.info("Compiled flow: %d block(s), %d variable(s)", len(order), len(self.variables))
        return CompiledProgram(
            code=code,
            is_valid=True,
            imports=sorted(self.imports),
            dependencies=sorted(self.dependencies),
            entry_point=ENTRY_POINT,
            execution_order=order,
            variables=self.variables,
        )

    # -- per-block pieces ---------------------------------------------------

    def _edge_active(self, edge: Edge) -> str:
        flag = f"active[{edge.source!r}]"
        if self.blocks[edge.source].block_type == "condition":
            branch = branch_binding(self.bindings[edge.source])
            if edge.source_handle == TRUE_HANDLE:
                return f"({flag} and {branch})"
            if edge.source_handle == FALSE_HANDLE:
                return f"({flag} and not {branch})"
        return flag

    def _activation(self, block: BlockInstance) -> str:
        if block.block_type == "input":
            return "True"
        incoming = self.incoming[block.id]
        if not incoming:
            return "False"
        return " or ".join(self._edge_active(e) for e in incoming)

    def _input_expr(self, block: BlockInstance) -> str:
        if block.block_type == "input":
            return "input"
        incoming = self.incoming[block.id]
        if not incoming:
            return "None"
        if len(incoming) == 1:
            return self.bindings[incoming[0].source]
        self.imports.add(FIRST_ACTIVE_IMPORT)
        pairs = ", ".join(f"({self._edge_active(e)}, {self.bindings[e.source]})" for e in incoming)
        return f"first_active({pairs})"

    def _scope(self, block: BlockInstance, prior_blocks: dict[str, str]) -> dict[str, str]:
        """Template names visible to `block`: earlier blocks, flow variables, then `input`."""
        scope = dict(prior_blocks)
        for var in self.variables:
            scope[var.name] = f"variables[{var.name!r}]"
        if block.block_type != "input":
            scope["input"] = self._input_expr(block)
        return scope

    def _block_lines(self, block: BlockInstance, ctx: EmitContext, fragment: Fragment) -> list[str]:
        record = (
            f"step.record({fragment.record}, result={ctx.binding})"
            if fragment.record
            else f"step.record({ctx.binding})"
        )
        step_body = [*fragment.lines, record]
        lines = [
            "",
            f"# {block.block_type}: {block.id}",
            f"active[{block.id!r}] = {self._activation(block)}",
            f"if active[{block.id!r}]:",
            f"{INDENT}with ctx.step({block.id!r}, {block.block_type!r}, {ctx.input_expr}) as step:",
            *indent(step_body, 2),
        ]
        if fragment.terminal:
            lines.append(f"{INDENT}return {ctx.binding}")
        return lines

    # -- module ----------------------------------------------------------------

    def _input_hint(self) -> str:
        if not self.variables:
            return "input"
        if entry_parameter_shape(self.variables) == "single":
            return self.variables[0].name
        keys = ", ".join(f"{v.name!r}: ..." for v in self.variables)
        return f"{{{keys}}}"

    def _assemble(self, helpers: list[str], initial: dict[str, str], body: list[str]) -> str:
        flow_variables = [
            {"name": v.name, "type": v.type, "default": v.default_value}
            for v in self.variables
        ]
        lines = [
            f'"""Compiled flow. Run with `await run_flow({self._input_hint()})`."""',
            "",
            *sorted(self.imports),
            "",
            f"ENTRY_POINT = {ENTRY_POINT!r}",
            "",
            "FLOW_VARIABLES = [",
            *indent([f"{var!r}," for var in flow_variables]),
            "]",
        ]
        for helper in helpers:
            lines.extend(["", "", helper])

        run_body = [
            "ctx = context if context is not None else FlowContext()",
            "variables = ctx.bind_variables(input, FLOW_VARIABLES)",
            "active = {}",
            *(f"{name} = {value}" for name, value in initial.items()),
            *body,
            "",
            "return ctx.last_output",
        ]
        lines.extend([
            "",
            "",
            f"async def {ENTRY_POINT}(input, context=None):",
            *indent(run_body),
        ])
        return "\n".join(lines) + "\n"
