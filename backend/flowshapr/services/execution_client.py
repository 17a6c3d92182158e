"""
Client for an execution daemon.

Used by the orchestration layer to hand a compiled flow to an executor and
turn the daemon's reply into an `ExecutionRecord`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from flowshapr.models.blocks import ExecutionRecord, TraceEntry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0


class ExecutionClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def health(self) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get("/health")
            response.raise_for_status()
            return response.json()

    async def execute(
        self,
        code: str,
        input: Any = None,
        *,
        config: dict[str, Any] | None = None,
        flow_id: str | None = None,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        """
        Run `code` on the daemon. Timeouts and transport errors come back as a
        failed record rather than an exception.
        """
        payload: dict[str, Any] = {"code": code, "input": input, "config": config or {}}
        if flow_id:
            payload["flowId"] = flow_id
        if execution_id:
            payload["executionId"] = execution_id

        try:
            async with self._client() as client:
                response = await client.post("/execute", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException:
            logger.warning("Execution %s timed out after %.0fs", execution_id or "(new)", self.timeout)
            return ExecutionRecord(
                execution_id=execution_id or "",
                flow_id=flow_id,
                input=input,
                error=f"Execution timed out after {self.timeout:g} seconds",
                error_type="Timeout",
                status="failed",
            )
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            logger.error("Execution daemon returned %s: %s", exc.response.status_code, detail)
            return ExecutionRecord(
                execution_id=execution_id or "",
                flow_id=flow_id,
                input=input,
                error=detail,
                error_type="DaemonError",
                status="failed",
            )
        except httpx.HTTPError as exc:
            logger.error("Execution daemon unreachable: %s", exc)
            return ExecutionRecord(
                execution_id=execution_id or "",
                flow_id=flow_id,
                input=input,
                error=f"Execution daemon unreachable: {exc}",
                error_type="DaemonError",
                status="failed",
            )

        return ExecutionRecord(
            execution_id=body.get("executionId") or execution_id or "",
            flow_id=flow_id,
            input=input,
            output=body.get("result"),
            error=body.get("error"),
            error_type=body.get("errorType"),
            trace=[TraceEntry.model_validate(entry) for entry in body.get("trace") or []],
            total_duration_ms=body.get("durationMs") or 0,
            status=body.get("status") or ("completed" if body.get("success") else "failed"),
        )

    async def shutdown(self) -> None:
        async with self._client() as client:
            response = await client.post("/shutdown")
            response.raise_for_status()


def _error_detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail") or response.text)
    except ValueError:
        return response.text
