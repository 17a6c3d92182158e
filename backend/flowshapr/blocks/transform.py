"""Transform block: reshapes the incoming data with a Python function body."""

from __future__ import annotations

from typing import Any

from flowshapr.blocks.base import BlockCodegen, EmitContext, Fragment, check_snippet, snippet_function
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic


class TransformCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.context import view",)

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        code = config.get("code")
        if not code:
            return []
        return check_snippet(code, "code")

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        helper_name = ctx.helper_prefix
        helper = snippet_function(helper_name, config["code"], "data")
        return Fragment(
            lines=[f"{ctx.binding} = {helper_name}(view({ctx.input_expr}))"],
            helpers=[helper],
        )


DESCRIPTOR = BlockTypeDescriptor(
    type="transform",
    name="Transform",
    description="Transform data with Python",
    long_description=(
        "Run a Python function body over the incoming value, available as "
        "`data`. Whatever the body returns flows to the next block."
    ),
    category="data",
    fields=[
        ConfigField(
            id="code",
            type="code",
            label="Code",
            placeholder="return data",
            default="return data",
            required=True,
            multiline=True,
        ),
    ],
    codegen=TransformCodegen(),
)
