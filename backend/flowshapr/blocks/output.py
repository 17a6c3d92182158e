"""Output block: formats the final value and returns it from the flow."""

from __future__ import annotations

from typing import Any

from flowshapr.blocks.base import (
    BlockCodegen,
    EmitContext,
    Fragment,
    check_json,
    check_snippet,
    parse_json_field,
    snippet_function,
)
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption


def _has_schema(config: dict[str, Any]) -> bool:
    return config.get("format") in ("json", "structured")


def _is_structured(config: dict[str, Any]) -> bool:
    return config.get("format") == "structured"


class OutputCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.output import format_output",)

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        if _has_schema(config):
            diags.extend(check_json(config.get("schema"), "schema", "output schema"))
        if _is_structured(config) and config.get("transformCode"):
            diags.extend(check_snippet(config["transformCode"], "transformCode"))
        return diags

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        output_format = config.get("format", "text")
        schema = parse_json_field(config.get("schema")) if _has_schema(config) else None
        helpers: list[str] = []
        value_expr = ctx.input_expr

        if _is_structured(config) and config.get("transformCode"):
            helper_name = ctx.helper_prefix
            helpers.append(snippet_function(helper_name, config["transformCode"], "data"))
            ctx.imports.add("from flowshapr.runtime.context import view")
            value_expr = f"{helper_name}(view({ctx.input_expr}))"

        line = f"{ctx.binding} = format_output({value_expr}, {output_format!r}, schema={schema!r})"
        return Fragment(lines=[line], terminal=True, helpers=helpers)


DESCRIPTOR = BlockTypeDescriptor(
    type="output",
    name="Output",
    description="Define output format for the flow",
    long_description=(
        "Configure how data exits your flow: plain text, JSON, or a custom "
        "structured value with an optional Python transform."
    ),
    category="output",
    fields=[
        ConfigField(
            id="format",
            type="select",
            label="Output Format",
            required=True,
            default="text",
            options=[
                FieldOption(value="text", label="Text", description="Plain text output"),
                FieldOption(value="json", label="JSON", description="JSON formatted output"),
                FieldOption(value="structured", label="Structured", description="Custom structured output"),
            ],
        ),
        ConfigField(
            id="schema",
            type="json",
            label="Output Schema",
            placeholder='{"type": "object", "properties": {...}}',
            multiline=True,
            visible_when=_has_schema,
            description="JSON schema the output is validated against",
        ),
        ConfigField(
            id="transformCode",
            type="code",
            label="Transform Code",
            placeholder="# Transform `data`\nreturn data",
            multiline=True,
            visible_when=_is_structured,
            description="Optional Python function body that reshapes the output",
        ),
    ],
    codegen=OutputCodegen(),
)
