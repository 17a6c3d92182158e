"""
Execution context handed to a compiled flow.

Generated modules do `ctx = context if context is not None else FlowContext()`
and wrap every block in `with ctx.step(...) as step:` so the caller gets a
per-block trace back. Credentials and the prompt library travel on the
context; the process environment is never touched.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from flowshapr.models.blocks import TraceEntry
from flowshapr.services.templates import render_template

logger = logging.getLogger(__name__)

__all__ = [
    "AttrDict",
    "BlockExecutionError",
    "FlowContext",
    "PromptNotFoundError",
    "StepRecorder",
    "first_active",
    "interrupt_marker",
    "render_template",
    "view",
]

AWAITING_RESPONSE = "awaiting_response"

_UNSET = object()


class BlockExecutionError(RuntimeError):
    """A block failed while the flow was running; the message is the original one."""

    def __init__(self, block_id: str, original: BaseException):
        self.block_id = block_id
        self.original = original
        super().__init__(str(original))


class PromptNotFoundError(LookupError):
    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Prompt '{prompt_id}' not found in prompt library")


# ---------------------------------------------------------------------------
# Value helpers used by generated code
# ---------------------------------------------------------------------------


class AttrDict(dict):
    """dict whose keys can also be read as attributes (`data.score`)."""

    def __getattr__(self, name: str) -> Any:
        try:
            return view(self[name])
        except KeyError:
            raise AttributeError(name) from None

    def __getitem__(self, key: Any) -> Any:
        return view(super().__getitem__(key))


def view(value: Any) -> Any:
    if isinstance(value, AttrDict):
        return value
    if isinstance(value, dict):
        return AttrDict(value)
    if isinstance(value, list):
        return [view(item) for item in value]
    return value


def first_active(*candidates: tuple[bool, Any]) -> Any:
    """Value of the first `(active, value)` pair whose flag is set."""
    for active, value in candidates:
        if active:
            return value
    return None


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class StepRecorder:
    def __init__(self, ctx: "FlowContext", entry: TraceEntry):
        self._ctx = ctx
        self.entry = entry

    def record(self, output: Any, result: Any = _UNSET) -> None:
        """Record the block's output; `result` overrides what flows on as the last value."""
        self.entry.output = output
        self._ctx.last_output = output if result is _UNSET else result


class FlowContext:
    def __init__(
        self,
        execution_id: str | None = None,
        flow_id: str | None = None,
        credentials: dict[str, str] | None = None,
        prompts: dict[str, Any] | None = None,
    ):
        self.execution_id = execution_id or f"local_{uuid.uuid4().hex[:12]}"
        self.flow_id = flow_id
        self.credentials = {k: v for k, v in (credentials or {}).items() if v}
        self.prompts = dict(prompts or {})
        self.trace: list[TraceEntry] = []
        self.last_output: Any = None
        self.interrupted = False

    def bind_variables(self, input: Any, flow_variables: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Map the flow input onto the declared flow variables.

        With a single variable the input may be the bare value or an object
        holding that key. With several, the input must be an object; absent
        keys fall back to the variable's default.
        """
        if not flow_variables:
            return {}

        if len(flow_variables) == 1:
            var = flow_variables[0]
            name = var["name"]
            if isinstance(input, dict) and name in input:
                return {name: input[name]}
            if input is None:
                return {name: var.get("default")}
            return {name: input}

        if input is None:
            input = {}
        if not isinstance(input, dict):
            names = ", ".join(v["name"] for v in flow_variables)
            raise TypeError(f"Flow input must be an object with keys: {names}")
        return {v["name"]: input.get(v["name"], v.get("default")) for v in flow_variables}

    @contextmanager
    def step(self, block_id: str, block_type: str, input: Any = None) -> Iterator[StepRecorder]:
        entry = TraceEntry(block_id=block_id, block_type=block_type, input=input)
        recorder = StepRecorder(self, entry)
        started = time.perf_counter()
        logger.debug("[%s] Running block '%s' (%s)", self.execution_id, block_id, block_type)
        try:
            yield recorder
        except BlockExecutionError:
            raise
        except Exception as exc:
            entry.error = str(exc)
            logger.warning("[%s] Block '%s' failed: %s", self.execution_id, block_id, exc)
            raise BlockExecutionError(block_id, exc) from exc
        finally:
            entry.duration_ms = int((time.perf_counter() - started) * 1000)
            self.trace.append(entry)

    def library_prompt(self, prompt_id: str) -> str:
        prompt = self.prompts.get(prompt_id)
        if prompt is None:
            raise PromptNotFoundError(prompt_id)
        if isinstance(prompt, dict):
            prompt = prompt.get("content") or prompt.get("template") or ""
        return str(prompt)

    def render_library_prompt(self, prompt_id: str, values: dict[str, Any]) -> str:
        return render_template(self.library_prompt(prompt_id), values)


def interrupt_marker(
    ctx: FlowContext,
    block_id: str,
    *,
    data: Any = None,
    interrupt_type: str = "manual-response",
    message: str = "",
    response_schema: Any = None,
    allowed_responses: list[Any] | None = None,
    timeout_ms: float | None = None,
) -> dict[str, Any]:
    """Stop the flow at `block_id` and describe the response a human should give."""
    ctx.interrupted = True
    logger.info("[%s] Flow interrupted at block '%s'", ctx.execution_id, block_id)
    return {
        "status": AWAITING_RESPONSE,
        "executionId": ctx.execution_id,
        "blockId": block_id,
        "interruptType": interrupt_type,
        "message": message,
        "data": data,
        "responseSchema": response_schema,
        "allowedResponses": allowed_responses or [],
        "timeout": timeout_ms,
    }
