"""
Tools an agent block can hand to its model.

A `ToolSpec` describes one tool attached to an agent. Built-in tools are
plain async functions registered in `BUILTIN_TOOLS`; custom tools wrap a
generated function; MCP tools are discovered and called over JSON-RPC 2.0
(`tools/list`, `tools/call`) on the server's HTTP endpoint.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

MCP_TIMEOUT_SECONDS = 30.0
HTTP_GET_MAX_CHARS = 20_000

ANY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": True}


class ToolCallError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BuiltinTool:
    description: str
    parameters: dict[str, Any]
    func: Callable[..., Awaitable[Any]]


async def _current_time(timezone_name: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    if timezone_name and timezone_name.upper() != "UTC":
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            now = now.astimezone(ZoneInfo(timezone_name))
        except ZoneInfoNotFoundError:
            raise ToolCallError(f"Unknown timezone: {timezone_name}") from None
    return now.isoformat()


async def _word_count(text: str = "") -> int:
    return len(re.findall(r"\S+", text or ""))


async def _json_parse(text: str = "") -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ToolCallError(f"Invalid JSON: {exc}") from exc


async def _http_get(url: str) -> str:
    async with httpx.AsyncClient(timeout=MCP_TIMEOUT_SECONDS, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.text[:HTTP_GET_MAX_CHARS]


BUILTIN_TOOLS: dict[str, BuiltinTool] = {
    "current_time": BuiltinTool(
        description="Get the current date and time as an ISO 8601 string",
        parameters={
            "type": "object",
            "properties": {
                "timezone_name": {"type": "string", "description": "IANA timezone, e.g. Europe/Paris"},
            },
        },
        func=_current_time,
    ),
    "word_count": BuiltinTool(
        description="Count the words in a piece of text",
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
        func=_word_count,
    ),
    "json_parse": BuiltinTool(
        description="Parse a JSON string into a value",
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
        func=_json_parse,
    ),
    "http_get": BuiltinTool(
        description="Fetch a URL with HTTP GET and return the response body as text",
        parameters={
            "type": "object",
            "properties": {"url": {"type": "string"}},
            "required": ["url"],
        },
        func=_http_get,
    ),
}


# ---------------------------------------------------------------------------
# MCP over HTTP
# ---------------------------------------------------------------------------


class MCPClient:
    def __init__(self, server_url: str, api_key: str | None = None, timeout: float = MCP_TIMEOUT_SECONDS):
        self.server_url = server_url
        self.api_key = api_key
        self.timeout = timeout
        self._next_id = 0

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params or {}}
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.server_url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()

        if body.get("error"):
            error = body["error"]
            raise ToolCallError(f"MCP error {error.get('code')}: {error.get('message')}")
        return body.get("result") or {}

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self._request("tools/list")
        return list(result.get("tools") or [])

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        text = "\n".join(
            part.get("text", "")
            for part in result.get("content") or []
            if part.get("type") == "text"
        )
        if result.get("isError"):
            raise ToolCallError(text or f"MCP tool '{name}' failed")
        return text


# ---------------------------------------------------------------------------
# ToolSpec
# ---------------------------------------------------------------------------


@dataclass
class ToolSpec:
    name: str
    kind: str = "builtin"
    description: str | None = None
    builtin: str | None = None
    handler: Callable[[Any], Any] | None = None
    server_url: str | None = None
    operations: list[str] = field(default_factory=list)
    api_key: str | None = None

    async def declarations(self) -> list[dict[str, Any]]:
        """Function declarations offered to the model: `{name, description, parameters}`."""
        if self.kind == "builtin":
            tool = _builtin(self.builtin)
            return [{
                "name": self.name,
                "description": self.description or tool.description,
                "parameters": tool.parameters,
            }]

        if self.kind == "custom":
            return [{
                "name": self.name,
                "description": self.description or f"Custom tool {self.name}",
                "parameters": ANY_OBJECT_SCHEMA,
            }]

        tools = await MCPClient(self.server_url or "", self.api_key).list_tools()
        if self.operations:
            tools = [t for t in tools if t.get("name") in self.operations]
        return [
            {
                "name": t["name"],
                "description": t.get("description") or "",
                "parameters": t.get("inputSchema") or ANY_OBJECT_SCHEMA,
            }
            for t in tools
        ]

    async def call(self, name: str, arguments: dict[str, Any]) -> Any:
        logger.info("Calling %s tool '%s'", self.kind, name)
        if self.kind == "builtin":
            return await _builtin(self.builtin).func(**arguments)

        if self.kind == "custom":
            if self.handler is None:
                raise ToolCallError(f"Custom tool '{self.name}' has no handler")
            result = self.handler(arguments)
            if inspect.isawaitable(result):
                result = await result
            return result

        return await MCPClient(self.server_url or "", self.api_key).call_tool(name, arguments)


def _builtin(name: str | None) -> BuiltinTool:
    tool = BUILTIN_TOOLS.get(name or "")
    if tool is None:
        raise ToolCallError(f"Unknown built-in tool: {name}")
    return tool


async def collect_declarations(tools: list[ToolSpec]) -> dict[str, tuple[ToolSpec, dict[str, Any]]]:
    """Declarations of every attached tool, keyed by the name the model will call."""
    results = await asyncio.gather(*(tool.declarations() for tool in tools))
    declared: dict[str, tuple[ToolSpec, dict[str, Any]]] = {}
    for tool, declarations in zip(tools, results):
        for declaration in declarations:
            declared.setdefault(declaration["name"], (tool, declaration))
    return declared
