"""
Built-in block types.

Importing this package registers every built-in block with the
process-wide `block_registry`.
"""

from flowshapr.blocks import agent, condition, input, interrupt, output, tool, transform
from flowshapr.models.block_registry import BlockRegistry, block_registry

BUILTIN_DESCRIPTORS = [
    input.DESCRIPTOR,
    agent.DESCRIPTOR,
    condition.DESCRIPTOR,
    tool.DESCRIPTOR,
    output.DESCRIPTOR,
    interrupt.DESCRIPTOR,
    transform.DESCRIPTOR,
]


def register_builtin_blocks(registry: BlockRegistry = block_registry) -> BlockRegistry:
    for descriptor in BUILTIN_DESCRIPTORS:
        if descriptor.type not in registry:
            registry.register(descriptor)
    return registry


register_builtin_blocks()
