"""
Flow graph validation.

Collects every structural and configuration problem in one pass so the
editor can show them all at once. Nothing here raises; problems are
returned as `Diagnostic`s inside a `ValidationReport`.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque

import flowshapr.blocks  # noqa: F401  (registers the built-in block types)
from flowshapr.models.block_registry import BlockRegistry, block_registry
from flowshapr.models.blocks import BlockInstance, Diagnostic, Edge, ValidationReport

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


def validate(
    blocks: list[BlockInstance],
    edges: list[Edge],
    registry: BlockRegistry = block_registry,
) -> ValidationReport:
    diags: list[Diagnostic] = []

    if not blocks:
        diags.append(Diagnostic(message="Flow must contain at least one block"))
        return ValidationReport.from_diagnostics(diags)

    # Block ids
    id_counts = Counter(b.id for b in blocks)
    for block_id, count in id_counts.items():
        if count > 1:
            diags.append(Diagnostic(message=f"Duplicate block ID '{block_id}'", block_id=block_id))

    block_map: dict[str, BlockInstance] = {}
    for block in blocks:
        block_map.setdefault(block.id, block)

    # Input / output cardinality
    input_ids = [b.id for b in block_map.values() if b.block_type == "input"]
    output_ids = [b.id for b in block_map.values() if b.block_type == "output"]
    if len(input_ids) != 1:
        diags.append(Diagnostic(
            message=f"Flow must have exactly one input block (found {len(input_ids)})",
        ))
    if not output_ids:
        diags.append(Diagnostic(severity="warning", message="Flow has no output block"))

    # Block configs
    for block in block_map.values():
        for diag in registry.validate_config(block.block_type, block.config):
            diags.append(diag.model_copy(update={"block_id": block.id}))

    # Edges
    known_edges: list[Edge] = []
    for edge in edges:
        missing = [end for end in (edge.source, edge.target) if end not in block_map]
        if missing:
            for end in missing:
                role = "source" if end == edge.source else "target"
                diags.append(Diagnostic(
                    message=f"Edge references unknown {role} block '{end}'",
                    edge_id=edge.id,
                ))
            continue
        known_edges.append(edge)
        diags.extend(_edge_warnings(edge, block_map))

    # Isolated blocks
    if len(block_map) > 1:
        connected = {e.source for e in known_edges} | {e.target for e in known_edges}
        for block_id in block_map:
            if block_id not in connected:
                diags.append(Diagnostic(
                    severity="warning",
                    message=f"Block '{block_id}' is not connected to any other block",
                    block_id=block_id,
                ))

    # Tool edges attach capabilities and never carry data.
    data_edges = [
        e for e in known_edges
        if "tool" not in (block_map[e.source].block_type, block_map[e.target].block_type)
    ]
    cycle = find_cycle(list(block_map), data_edges)
    if cycle:
        diags.append(Diagnostic(
            message=f"Cycle detected: {' -> '.join(cycle)}",
            block_id=cycle[0],
            path=cycle,
        ))

    if len(input_ids) == 1 and output_ids:
        reachable = _reachable_from(input_ids[0], known_edges)
        if not reachable.intersection(output_ids):
            diags.append(Diagnostic(
                severity="warning",
                message="No output block is reachable from the input block",
                block_id=input_ids[0],
            ))

    report = ValidationReport.from_diagnostics(diags)
    logger.debug(
        "Validated flow: %d block(s), %d error(s), %d warning(s)",
        len(block_map), len(report.errors), len(report.warnings),
    )
    return report


def _edge_warnings(edge: Edge, block_map: dict[str, BlockInstance]) -> list[Diagnostic]:
    diags: list[Diagnostic] = []
    source_type = block_map[edge.source].block_type
    target_type = block_map[edge.target].block_type

    for tool_end, other_type in ((edge.source, target_type), (edge.target, source_type)):
        if block_map[tool_end].block_type == "tool" and other_type != "agent":
            diags.append(Diagnostic(
                message=f"Tool block '{tool_end}' can only connect to an agent",
                edge_id=edge.id,
                block_id=tool_end,
            ))
    if source_type == "input" and target_type == "output":
        diags.append(Diagnostic(
            severity="warning",
            message="Input connects directly to output; the flow does no processing",
            edge_id=edge.id,
        ))
    if source_type == "output":
        diags.append(Diagnostic(
            severity="warning",
            message=f"Output block '{edge.source}' has outgoing connections; the flow ends at an output",
            edge_id=edge.id,
            block_id=edge.source,
        ))
    if target_type == "input":
        diags.append(Diagnostic(
            severity="warning",
            message=f"Input block '{edge.target}' has incoming connections that are ignored",
            edge_id=edge.id,
            block_id=edge.target,
        ))
    return diags


def find_cycle(block_ids: list[str], edges: list[Edge]) -> list[str] | None:
    """
    Depth-first search with white/gray/black marking.

    Stops at the first back edge and returns the cycle as a path that starts
    and ends on the same block, e.g. `["a", "b", "a"]`.
    """
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)

    color = {block_id: _WHITE for block_id in block_ids}

    for root in block_ids:
        if color[root] != _WHITE:
            continue
        path = [root]
        color[root] = _GRAY
        stack = [iter(adjacency[root])]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = _BLACK
                stack.pop()
                continue
            if color.get(nxt) == _GRAY:
                return path[path.index(nxt):] + [nxt]
            if color.get(nxt) == _WHITE:
                color[nxt] = _GRAY
                path.append(nxt)
                stack.append(iter(adjacency[nxt]))
    return None


def _reachable_from(start: str, edges: list[Edge]) -> set[str]:
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)
    seen = {start}
    queue = deque([start])
    while queue:
        for nxt in adjacency[queue.popleft()]:
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen
