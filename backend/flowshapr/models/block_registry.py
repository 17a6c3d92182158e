"""
Block type registry — source of truth for what each block type accepts and emits.

Maps editor block type tags to their config schema and the code generator
used by the compiler. Populated once at import time by
`flowshapr.blocks.register_builtin_blocks()`.
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from flowshapr.models.blocks import BlockCategory, ConfigField, Diagnostic

if TYPE_CHECKING:
    from flowshapr.blocks.base import BlockCodegen

logger = logging.getLogger(__name__)


class BlockTypeNotFoundError(LookupError):
    """Raised when a block type tag is not registered."""

    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Unknown block type: {block_type}")


class DuplicateBlockTypeError(ValueError):
    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Block type '{block_type}' is already registered")


class BlockTypeDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: str
    name: str
    description: str
    long_description: str | None = None
    category: BlockCategory
    version: str = "1.0.0"
    fields: list[ConfigField] = Field(default_factory=list)
    codegen: Any = Field(exclude=True)

    def field(self, field_id: str) -> ConfigField | None:
        return next((f for f in self.fields if f.id == field_id), None)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class BlockRegistry:
    def __init__(self) -> None:
        self._blocks: dict[str, BlockTypeDescriptor] = {}

    def register(self, descriptor: BlockTypeDescriptor) -> BlockTypeDescriptor:
        if descriptor.type in self._blocks:
            raise DuplicateBlockTypeError(descriptor.type)
        self._blocks[descriptor.type] = descriptor
        logger.debug("Registered block type '%s'", descriptor.type)
        return descriptor

    def get(self, block_type: str) -> BlockTypeDescriptor:
        descriptor = self._blocks.get(block_type)
        if descriptor is None:
            raise BlockTypeNotFoundError(block_type)
        return descriptor

    def find(self, block_type: str) -> BlockTypeDescriptor | None:
        """Look up a block type, returning None if unknown."""
        return self._blocks.get(block_type)

    def __contains__(self, block_type: object) -> bool:
        return block_type in self._blocks

    def list(self) -> list[BlockTypeDescriptor]:
        return list(self._blocks.values())

    def get_types(self) -> list[str]:
        return list(self._blocks.keys())

    def get_default_config(self, block_type: str) -> dict[str, Any]:
        """Fresh default config for a new block; callers may mutate it freely."""
        descriptor = self.get(block_type)
        return {
            f.id: copy.deepcopy(f.default)
            for f in descriptor.fields
            if f.default is not None
        }

    def get_stats(self) -> dict[str, Any]:
        by_category = Counter(d.category for d in self._blocks.values())
        return {"count": len(self._blocks), "byCategory": dict(sorted(by_category.items()))}

    def validate_config(self, block_type: str, config: dict[str, Any]) -> list[Diagnostic]:
        """
        Validate a block config against its field schema and the block's own rules.

        Required fields must be present in `config` itself; defaults only seed
        new instances (see `get_default_config`).
        """
        descriptor = self.find(block_type)
        if descriptor is None:
            return [Diagnostic(message=f"Unknown block type: {block_type}")]

        config = config or {}
        diags = _check_fields(descriptor, config)
        diags.extend(descriptor.codegen.validate(config))
        return diags

    def client_metadata(self) -> list[dict[str, Any]]:
        """Editor-safe metadata: no predicates, no code generators."""
        return [self.describe(d.type) for d in self._blocks.values()]

    def describe(self, block_type: str) -> dict[str, Any]:
        d = self.get(block_type)
        return {
            "type": d.type,
            "name": d.name,
            "description": d.description,
            "longDescription": d.long_description,
            "category": d.category,
            "version": d.version,
            "fields": [f.model_dump(exclude_none=True) for f in d.fields],
        }


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_fields(descriptor: BlockTypeDescriptor, config: dict[str, Any]) -> list[Diagnostic]:
    diags: list[Diagnostic] = []
    for f in descriptor.fields:
        if not f.is_visible(config):
            continue
        value = config.get(f.id)
        if f.required and _is_blank(value):
            diags.append(Diagnostic(message=f"{f.label} is required", field=f.id))
            continue
        if _is_blank(value):
            continue
        if f.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                diags.append(Diagnostic(message=f"{f.label} must be a number", field=f.id))
                continue
            if f.min is not None and value < f.min:
                diags.append(Diagnostic(message=f"{f.label} must be at least {f.min:g}", field=f.id))
            if f.max is not None and value > f.max:
                diags.append(Diagnostic(message=f"{f.label} must be at most {f.max:g}", field=f.id))
        elif f.type == "select" and f.options:
            allowed = [o.value for o in f.options]
            if value not in allowed:
                diags.append(Diagnostic(
                    message=f"{f.label} must be one of: {', '.join(str(v) for v in allowed)}",
                    field=f.id,
                ))
    return diags


block_registry = BlockRegistry()
