"""Runtime support imported by compiled flow modules."""

from flowshapr.runtime.context import (
    BlockExecutionError,
    FlowContext,
    first_active,
    interrupt_marker,
    render_template,
    view,
)

__all__ = [
    "BlockExecutionError",
    "FlowContext",
    "first_active",
    "interrupt_marker",
    "render_template",
    "view",
]
