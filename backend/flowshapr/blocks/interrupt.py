"""
Interrupt block. Stops the flow and hands control to a human.

Execution is single-shot: the flow returns an "awaiting response" marker at
this point and nothing downstream runs. Resuming is left to the caller.
"""

from __future__ import annotations

from typing import Any

from flowshapr.blocks.base import BlockCodegen, EmitContext, Fragment, check_json, parse_json_field
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption

DEFAULT_MESSAGE = "Human review required"


class InterruptCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.context import interrupt_marker",)

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        diags = check_json(config.get("responseSchema"), "responseSchema", "response schema")
        allowed_diags = check_json(config.get("allowedResponses"), "allowedResponses", "allowed responses")
        diags.extend(allowed_diags)
        allowed = None if allowed_diags else parse_json_field(config.get("allowedResponses"))
        if allowed is not None and not isinstance(allowed, list):
            diags.append(Diagnostic(message="Allowed responses must be a list", field="allowedResponses"))
        return diags

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        allowed = [r for r in (parse_json_field(config.get("allowedResponses")) or []) if r]
        args = ", ".join([
            "ctx",
            repr(ctx.block.id),
            f"data={ctx.input_expr}",
            f"interrupt_type={config.get('interruptType', 'manual-response')!r}",
            f"message={ctx.template(config.get('message') or DEFAULT_MESSAGE)}",
            f"response_schema={parse_json_field(config.get('responseSchema'))!r}",
            f"allowed_responses={allowed!r}",
            f"timeout_ms={config.get('timeout') or None!r}",
        ])
        return Fragment(lines=[f"{ctx.binding} = interrupt_marker({args})"], terminal=True)


DESCRIPTOR = BlockTypeDescriptor(
    type="interrupt",
    name="Interrupt",
    description="Pause the flow for human input",
    long_description=(
        "Stop the flow and return an 'awaiting response' marker carrying the "
        "current data, a message for the reviewer, and the expected response "
        "shape."
    ),
    category="control",
    fields=[
        ConfigField(
            id="interruptType",
            type="select",
            label="Interrupt Type",
            default="manual-response",
            options=[
                FieldOption(value="manual-response", label="Manual Response"),
                FieldOption(value="restartable", label="Restartable"),
            ],
        ),
        ConfigField(
            id="message",
            label="Interrupt Message",
            default=DEFAULT_MESSAGE,
            placeholder="Please review the data and provide your response...",
            multiline=True,
        ),
        ConfigField(
            id="responseSchema",
            type="json",
            label="Response Schema (Optional)",
            multiline=True,
        ),
        ConfigField(id="timeout", type="number", label="Timeout (milliseconds)", min=1),
        ConfigField(
            id="allowedResponses",
            type="json",
            label="Allowed Responses (Optional)",
            description="List of accepted response values",
        ),
    ],
    codegen=InterruptCodegen(),
)
