import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import api_router
from .models.block_registry import block_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan: startup and shutdown events.
    """
    logger.info("Starting Flowshapr API with %d block type(s)", len(block_registry.get_types()))

    yield

    logger.info("Shutting down Flowshapr API")

app = FastAPI(
    title="Flowshapr",
    description="Flowshapr compiles visual AI flows (input, agent, tool, condition, output) into runnable Python modules.",
    lifespan=lifespan
)

# Editor runs on localhost during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"^http:\/\/localhost:\d+$|^http:\/\/127\.0\.0\.1:\d+$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(api_router)
