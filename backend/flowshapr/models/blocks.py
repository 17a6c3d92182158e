"""
Flow graph models: the editor's block/edge graph and the compiler's output.

Block instances and edges arrive from the editor (camelCase, sometimes in
ReactFlow's `{type, data: {config}}` shape) and are normalized here. The
compiled program and execution record are produced on demand and are NOT
persisted by the core.
"""

from __future__ import annotations

from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


BlockCategory = Literal["input", "genai", "output", "logic", "data", "control"]
BlockState = Literal["idle", "running", "completed", "error"]
FieldType = Literal["text", "number", "select", "checkbox", "code", "json"]
Severity = Literal["error", "warning", "info"]
VariableSource = Literal["input", "manual", "runtime", "auto"]
VariableType = Literal["string", "number", "boolean", "object", "array"]


class FieldOption(BaseModel):
    value: Any
    label: str
    description: str | None = None


class ConfigField(BaseModel):
    """One configurable field of a block type, as rendered in the editor."""

    id: str
    type: FieldType = "text"
    label: str
    required: bool = False
    default: Any = None
    options: list[FieldOption] = Field(default_factory=list)
    placeholder: str | None = None
    multiline: bool = False
    min: float | None = None
    max: float | None = None
    description: str | None = None
    # Server-side only; never sent to the editor.
    visible_when: Callable[[dict[str, Any]], bool] | None = Field(default=None, exclude=True)

    def is_visible(self, config: dict[str, Any]) -> bool:
        return self.visible_when is None or bool(self.visible_when(config))


class Diagnostic(BaseModel):
    severity: Severity = "error"
    message: str
    block_id: str | None = None
    edge_id: str | None = None
    field: str | None = None
    path: list[str] | None = None


class ValidationReport(BaseModel):
    is_valid: bool
    errors: list[Diagnostic] = Field(default_factory=list)
    warnings: list[Diagnostic] = Field(default_factory=list)

    @classmethod
    def from_diagnostics(cls, diagnostics: list[Diagnostic]) -> "ValidationReport":
        errors = [d for d in diagnostics if d.severity == "error"]
        warnings = [d for d in diagnostics if d.severity != "error"]
        return cls(is_valid=not errors, errors=errors, warnings=warnings)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Position(BaseModel):
    x: float = 0
    y: float = 0


class BlockInstance(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    block_type: str = Field(alias="blockType")
    position: Position = Field(default_factory=Position)
    config: dict[str, Any] = Field(default_factory=dict)
    state: BlockState = "idle"

    @model_validator(mode="before")
    @classmethod
    def _accept_editor_shape(cls, value: Any) -> Any:
        # ReactFlow nodes carry the block type in `type` or `data.type`,
        # and the config under `data.config`.
        if not isinstance(value, dict):
            return value
        if "blockType" in value or "block_type" in value:
            return value
        data = value.get("data") or {}
        normalized = dict(value)
        block_type = data.get("type") or value.get("type")
        if block_type:
            normalized["blockType"] = str(block_type).lower()
        if "config" not in normalized and isinstance(data.get("config"), dict):
            normalized["config"] = data["config"]
        normalized.pop("data", None)
        normalized.pop("type", None)
        return normalized

    def with_config(self, **changes: Any) -> "BlockInstance":
        """Return a copy of this block with `changes` merged into its config."""
        return self.model_copy(update={"config": {**self.config, **changes}})


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str | None = None
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")


class FlowVariable(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: VariableType = "string"
    source: VariableSource = "input"
    description: str | None = None
    default_value: Any = Field(default=None, alias="defaultValue")


# ---------------------------------------------------------------------------
# Compiler output
# ---------------------------------------------------------------------------


class CompiledProgram(BaseModel):
    code: str = ""
    is_valid: bool
    errors: list[Diagnostic] = Field(default_factory=list)
    warnings: list[Diagnostic] = Field(default_factory=list)
    imports: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    entry_point: str = "run_flow"
    execution_order: list[str] = Field(default_factory=list)
    variables: list[FlowVariable] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TraceEntry(BaseModel):
    block_id: str
    block_type: str | None = None
    input: Any = None
    output: Any = None
    duration_ms: int = 0
    error: str | None = None


class ExecutionRecord(BaseModel):
    execution_id: str
    flow_id: str | None = None
    input: Any = None
    output: Any = None
    error: str | None = None
    error_type: str | None = None
    trace: list[TraceEntry] = Field(default_factory=list)
    total_duration_ms: int = 0
    status: Literal["completed", "failed", "interrupted"]
