"""Condition block. Evaluates a Python expression and gates its true/false branches."""

from __future__ import annotations

from typing import Any

from flowshapr.blocks.base import BlockCodegen, EmitContext, Fragment, check_snippet, snippet_function
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption

TRUE_HANDLE = "true"
FALSE_HANDLE = "false"


def branch_binding(binding: str) -> str:
    return f"{binding}_branch"


def _is_function(config: dict[str, Any]) -> bool:
    return config.get("conditionType") == "function"


class ConditionCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.context import view",)

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        condition = config.get("condition")
        if not condition:
            return []
        return check_snippet(condition, "condition", mode="exec" if _is_function(config) else "eval")

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        helper_name = ctx.helper_prefix
        helper = snippet_function(
            helper_name,
            config["condition"],
            "data",
            expression=not _is_function(config),
        )
        flag = branch_binding(ctx.binding)
        lines = [
            f"{ctx.binding} = {ctx.input_expr}",
            f"{flag} = bool({helper_name}(view({ctx.binding})))",
        ]
        return Fragment(
            lines=lines,
            record=flag,
            helpers=[helper],
            extra_bindings={flag: "False"},
        )


DESCRIPTOR = BlockTypeDescriptor(
    type="condition",
    name="Condition",
    description="Conditional branching logic",
    long_description=(
        "Branch the flow on the incoming data. The expression sees the data "
        "as `data` (dict keys are also readable as attributes, e.g. "
        "`data.score > 0.5`). Blocks on the `true` handle run only when it "
        "holds, blocks on the `false` handle only when it does not."
    ),
    category="logic",
    fields=[
        ConfigField(
            id="conditionType",
            type="select",
            label="Condition Type",
            default="expression",
            options=[
                FieldOption(value="expression", label="Expression", description="Single Python expression"),
                FieldOption(value="function", label="Function", description="Function body returning a bool"),
            ],
        ),
        ConfigField(
            id="condition",
            type="code",
            label="Condition",
            placeholder="data.score > 0.5",
            default="bool(data)",
            required=True,
            multiline=True,
            description="Python expression or function body to evaluate",
        ),
        ConfigField(id="trueLabel", label="True Label", placeholder="Yes", default="Yes"),
        ConfigField(id="falseLabel", label="False Label", placeholder="No", default="No"),
    ],
    codegen=ConditionCodegen(),
)
