from fastapi import APIRouter
from .v1 import blocks

api_router = APIRouter(prefix="/api", tags=["flows"])

api_router.include_router(blocks.router, prefix="/v1", tags=["blocks"])

@api_router.get("/")
def read_root():
    return {"message": "Flowshapr API"}
