"""
Flow executor: writes a compiled flow to disk, imports it and runs it once.

Every execution gets its own scratch file and its own module object, so
concurrent runs never share state. The scratch file and the module cache
entry are removed whatever happens.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
import random
import re
import string
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Annotated, Any, Callable

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field

from flowshapr.config import DaemonSettings
from flowshapr.daemon.errors import DaemonFault, ExecutionConflictError, classify_error
from flowshapr.models.blocks import TraceEntry
from flowshapr.runtime.context import FlowContext

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "flow_"
ENTRY_CANDIDATES = ("run_flow", "default", "execute_flow")
EXECUTION_ID_PATTERN = r"^[A-Za-z0-9_.-]{1,128}$"

# config key -> provider name used by the runtime
CREDENTIAL_KEYS = {
    "googleApiKey": "googleai",
    "openaiApiKey": "openai",
    "anthropicApiKey": "anthropic",
}


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    input: Any = None
    config: dict[str, Any] = Field(default_factory=dict)
    flow_id: str | None = Field(default=None, alias="flowId")
    execution_id: Annotated[str, Field(pattern=EXECUTION_ID_PATTERN)] | None = Field(default=None, alias="executionId")


def new_execution_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"exec_{int(time.time() * 1000)}_{suffix}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def resolve_entry(module: ModuleType) -> Callable[..., Any]:
    """
    Pick the callable to run: the module's declared ENTRY_POINT, then
    `run_flow`, `default`, `execute_flow`, then the first public function.
    """
    declared = getattr(module, "ENTRY_POINT", None)
    names = ([declared] if isinstance(declared, str) else []) + list(ENTRY_CANDIDATES)
    for name in names:
        candidate = getattr(module, name, None)
        if callable(candidate):
            return candidate

    for name, value in vars(module).items():
        if name.startswith("_") or not inspect.isfunction(value):
            continue
        if value.__module__ == module.__name__:
            return value
    raise AttributeError("No executable function found in generated code")


async def invoke_entry(entry: Callable[..., Any], input: Any, ctx: FlowContext) -> Any:
    """Call `entry` with the input (and the context when it takes one); await if needed."""
    try:
        params = inspect.signature(entry).parameters
    except (TypeError, ValueError):
        params = {}
    takes_context = "context" in params or len(params) >= 2
    result = entry(input, ctx) if takes_context else entry(input)
    if inspect.isawaitable(result):
        result = await result
    return result


def encode_result(result: Any) -> Any:
    """JSON-ready copy of a flow result; raises TypeError when it cannot be encoded."""
    try:
        return jsonable_encoder(result)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"Flow result of type {type(result).__name__} is not JSON serializable") from exc


def encode_trace_entry(entry: TraceEntry) -> dict[str, Any]:
    data = entry.model_dump()
    try:
        return jsonable_encoder(data)
    except (TypeError, ValueError):
        # Values that cannot be encoded are reported by their repr.
        data["input"] = repr(entry.input)
        data["output"] = repr(entry.output)
        return jsonable_encoder(data)


class FlowExecutor:
    def __init__(self, settings: DaemonSettings):
        self.settings = settings
        self.scratch_dir = Path(settings.scratch_dir)
        self._active: set[str] = set()

    @property
    def active_count(self) -> int:
        return len(self._active)

    # -- scratch files ----------------------------------------------------------

    def prepare(self) -> int:
        """Create the scratch dir and delete flow files left behind by a previous process."""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        removed = 0
        for path in self.scratch_dir.glob(f"{SCRATCH_PREFIX}*.py"):
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("Could not remove orphaned flow file %s: %s", path, exc)
        if removed:
            logger.info("Removed %d orphaned flow file(s) from %s", removed, self.scratch_dir)
        return removed

    def scratch_path(self, execution_id: str) -> Path:
        return self.scratch_dir / f"{SCRATCH_PREFIX}{execution_id}.py"

    def _write_scratch(self, execution_id: str, code: str) -> Path:
        path = self.scratch_path(execution_id)
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DaemonFault(f"Scratch directory unavailable: {exc}") from exc
        try:
            with open(path, "x", encoding="utf-8") as f:
                f.write(code)
        except FileExistsError as exc:
            raise ExecutionConflictError(execution_id) from exc
        except OSError as exc:
            raise DaemonFault(f"Failed to write flow file: {exc}") from exc
        return path

    def _cleanup(self, path: Path, module_name: str) -> None:
        sys.modules.pop(module_name, None)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to remove flow file %s: %s", path, exc)

    # -- execution ----------------------------------------------------------------

    def _load_module(self, module_name: str, path: Path) -> ModuleType:
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise DaemonFault(f"Cannot load flow module from {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module

    def _context(self, request: ExecuteRequest, execution_id: str) -> FlowContext:
        config = request.config or {}
        credentials = {
            provider: config[key]
            for key, provider in CREDENTIAL_KEYS.items()
            if isinstance(config.get(key), str) and config[key]
        }
        prompts = config.get("prompts")
        if prompts is not None and not isinstance(prompts, dict):
            logger.warning("[%s] Ignoring prompt library of type %s", execution_id, type(prompts).__name__)
            prompts = None
        return FlowContext(
            execution_id=execution_id,
            flow_id=request.flow_id,
            credentials=credentials,
            prompts=prompts,
        )

    async def execute(self, request: ExecuteRequest) -> dict[str, Any]:
        """
        Run one flow execution and build the response body.

        Flow failures come back as `success: false`. DaemonFault and
        ExecutionConflictError are raised for the HTTP layer to map.
        """
        execution_id = request.execution_id or new_execution_id()
        if execution_id in self._active:
            raise ExecutionConflictError(execution_id)

        self._active.add(execution_id)
        try:
            ctx = self._context(request, execution_id)
            module_name = f"flowshapr_flow_{re.sub(r'[^0-9A-Za-z_]', '_', execution_id)}_{uuid.uuid4().hex[:8]}"
            path = self._write_scratch(execution_id, request.code)
            started = time.perf_counter()

            try:
                logger.info("[%s] Executing flow %s", execution_id, request.flow_id or "(inline)")
                module = self._load_module(module_name, path)
                entry = resolve_entry(module)
                result = encode_result(await invoke_entry(entry, request.input, ctx))
            except DaemonFault:
                raise
            except Exception as exc:
                error = classify_error(exc)
                logger.warning("[%s] Flow execution failed (%s): %s", execution_id, error.error_type, error)
                body = self._response(execution_id, ctx, started, success=False, status="failed")
                body["error"] = str(error)
                body["errorType"] = error.error_type
                return body
            finally:
                self._cleanup(path, module_name)

            status = "interrupted" if ctx.interrupted else "completed"
            logger.info("[%s] Flow execution %s", execution_id, status)
            body = self._response(execution_id, ctx, started, success=True, status=status)
            body["result"] = result
            return body
        finally:
            self._active.discard(execution_id)

    def _response(
        self,
        execution_id: str,
        ctx: FlowContext,
        started: float,
        *,
        success: bool,
        status: str,
    ) -> dict[str, Any]:
        return {
            "success": success,
            "executionId": execution_id,
            "executorId": self.settings.executor_id,
            "timestamp": utc_timestamp(),
            "status": status,
            "durationMs": int((time.perf_counter() - started) * 1000),
            "trace": [encode_trace_entry(entry) for entry in ctx.trace],
        }
