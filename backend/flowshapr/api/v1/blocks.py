from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ...models.block_registry import BlockTypeNotFoundError, block_registry
from ...models.blocks import BlockInstance, CompiledProgram, Edge, FlowVariable, ValidationReport
from ...services.code_generator import compile_flow, validate_flow

router = APIRouter(prefix="/blocks")


class FlowGraphRequest(BaseModel):
    blocks: List[BlockInstance] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


class GenerateCodeRequest(FlowGraphRequest):
    variables: Optional[List[FlowVariable]] = None


@router.get("")
async def list_blocks():
    """
    Palette metadata for every registered block type.
    """
    return block_registry.client_metadata()


@router.get("/types")
async def list_block_types():
    return {"types": block_registry.get_types()}


@router.get("/stats")
async def block_stats():
    return block_registry.get_stats()


@router.post("/validate", response_model=ValidationReport)
async def validate_graph(request: FlowGraphRequest):
    """
    Validate a flow graph; every problem is returned, nothing is raised.
    """
    return validate_flow(request.blocks, request.edges)


@router.post("/generate-code", response_model=CompiledProgram)
async def generate_code(request: GenerateCodeRequest):
    """
    Compile a flow graph to Python source. Invalid graphs come back with
    `is_valid: false` and their errors.
    """
    return compile_flow(request.blocks, request.edges, request.variables)


@router.get("/{block_type}")
async def get_block(block_type: str):
    try:
        return block_registry.describe(block_type)
    except BlockTypeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{block_type}/defaults")
async def get_block_defaults(block_type: str):
    if block_type not in block_registry:
        raise HTTPException(status_code=404, detail=f"Block type '{block_type}' not found")
    return {"type": block_type, "config": block_registry.get_default_config(block_type)}
