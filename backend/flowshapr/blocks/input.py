"""Input block."""

from __future__ import annotations

import keyword
from typing import Any

from flowshapr.blocks.base import BlockCodegen, EmitContext, Fragment
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption

DEFAULT_VARIABLE_NAME = "input"


def is_variable_mode(config: dict[str, Any]) -> bool:
    return config.get("inputType", "variable") != "static"


def variable_name(config: dict[str, Any]) -> str:
    return (config.get("variableName") or DEFAULT_VARIABLE_NAME).strip()


def _is_static(config: dict[str, Any]) -> bool:
    return not is_variable_mode(config)


class InputCodegen(BlockCodegen):
    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        if _is_static(config) and config.get("staticValue") is None:
            diags.append(Diagnostic(
                message="Static value is required when input type is static",
                field="staticValue",
            ))
        if is_variable_mode(config):
            name = variable_name(config)
            if not name.isidentifier() or keyword.iskeyword(name):
                diags.append(Diagnostic(
                    message="Variable name must be a valid Python identifier",
                    field="variableName",
                ))
        return diags

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        if _is_static(config):
            value = config.get("staticValue")
            if value is None:
                value = config.get("defaultValue")
            return Fragment(lines=[f"{ctx.binding} = {value!r}"])
        return Fragment(lines=[f"{ctx.binding} = variables[{variable_name(config)!r}]"])


DESCRIPTOR = BlockTypeDescriptor(
    type="input",
    name="Input",
    description="Define input data for the flow",
    long_description=(
        "Configure how data enters your flow. Can be a static value or a "
        "variable read from the flow input."
    ),
    category="input",
    fields=[
        ConfigField(
            id="inputType",
            type="select",
            label="Input Type",
            default="variable",
            options=[
                FieldOption(value="static", label="Static Value", description="Use a fixed value"),
                FieldOption(value="variable", label="Variable", description="Extract from flow input"),
            ],
        ),
        ConfigField(
            id="staticValue",
            label="Static Value",
            placeholder="Enter static value...",
            multiline=True,
            visible_when=_is_static,
        ),
        ConfigField(
            id="variableName",
            label="Variable Name",
            placeholder="input",
            default=DEFAULT_VARIABLE_NAME,
            visible_when=is_variable_mode,
        ),
        ConfigField(
            id="variableType",
            type="select",
            label="Variable Type",
            default="string",
            options=[
                FieldOption(value=t, label=t.capitalize())
                for t in ("string", "number", "boolean", "object", "array")
            ],
            visible_when=is_variable_mode,
        ),
        ConfigField(
            id="variableDescription",
            label="Variable Description",
            placeholder="Describe what this variable represents...",
            multiline=True,
            visible_when=is_variable_mode,
        ),
        ConfigField(
            id="defaultValue",
            label="Default Value",
            placeholder="Default value if not provided...",
            visible_when=is_variable_mode,
        ),
    ],
    codegen=InputCodegen(),
)
