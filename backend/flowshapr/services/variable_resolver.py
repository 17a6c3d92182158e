"""
Flow variable discovery.

Every input block in variable mode declares one flow variable. The compiled
program binds them from the run input (see `FlowContext.bind_variables`).
"""

from __future__ import annotations

import logging
from typing import Iterable, Literal

from flowshapr.blocks.input import is_variable_mode, variable_name
from flowshapr.models.blocks import BlockInstance, FlowVariable

logger = logging.getLogger(__name__)

_VARIABLE_TYPES = {"string", "number", "boolean", "object", "array"}


def resolve_variables(
    blocks: Iterable[BlockInstance],
    manual: Iterable[FlowVariable] = (),
) -> list[FlowVariable]:
    """
    Variables declared by the graph's input blocks, followed by `manual` ones.

    Manual/runtime variables whose name is already taken are dropped.
    """
    variables: list[FlowVariable] = []
    seen: set[str] = set()

    for block in blocks:
        if block.block_type != "input" or not is_variable_mode(block.config):
            continue
        name = variable_name(block.config)
        if name in seen:
            continue
        var_type = block.config.get("variableType") or "string"
        variables.append(FlowVariable(
            name=name,
            type=var_type if var_type in _VARIABLE_TYPES else "string",
            source="input",
            description=block.config.get("variableDescription") or None,
            default_value=block.config.get("defaultValue"),
        ))
        seen.add(name)

    for var in manual:
        if var.name in seen:
            logger.debug("Skipping variable '%s': name already declared", var.name)
            continue
        variables.append(var)
        seen.add(var.name)

    return variables


def entry_parameter_shape(variables: list[FlowVariable]) -> Literal["single", "object"]:
    """`single` when the entry point takes one bare value, `object` for a keyed input."""
    return "single" if len(variables) == 1 else "object"
