"""
Tool blocks describe a capability attached to an agent.

Tools never run in the main chain. A tool connected to an agent's `tool`
handle is emitted as a `ToolSpec` inside that agent's `generate(...)` call.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from flowshapr.blocks.base import BlockCodegen, Fragment, EmitContext, check_snippet, snippet_function
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption
from flowshapr.runtime.tools import BUILTIN_TOOLS

TOOL_HANDLE = "tool"
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def _tool_type(config: dict[str, Any]) -> str:
    return config.get("toolType", "builtin")


def _is_mcp(config: dict[str, Any]) -> bool:
    return _tool_type(config) == "mcp"


def _is_custom(config: dict[str, Any]) -> bool:
    return _tool_type(config) == "custom"


def _is_builtin(config: dict[str, Any]) -> bool:
    return _tool_type(config) == "builtin"


def selected_tools(config: dict[str, Any]) -> list[str]:
    raw = config.get("selectedTools") or []
    if isinstance(raw, str):
        raw = raw.replace("\n", ",").split(",")
    return [name.strip() for name in raw if name and name.strip()]


class ToolCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.tools import ToolSpec",)
    in_main_chain = False

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        if _is_mcp(config) and config.get("serverUrl"):
            parsed = urlparse(config["serverUrl"])
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                diags.append(Diagnostic(message="Invalid URL format", field="serverUrl"))
            elif config.get("allowRemote") is False and parsed.hostname not in LOCAL_HOSTS:
                diags.append(Diagnostic(
                    message="Remote MCP servers are disabled for this tool",
                    field="serverUrl",
                ))
        if _is_custom(config) and config.get("customCode"):
            diags.extend(check_snippet(config["customCode"], "customCode"))
        return diags

    def get_dependencies(self, config: dict[str, Any]) -> list[str]:
        deps = list(self.dependencies)
        if _is_mcp(config):
            deps.append("httpx")
        return deps

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        raise NotImplementedError("Tool blocks are emitted by the agent they attach to")

    def spec_expr(self, config: dict[str, Any], helper_name: str) -> tuple[str, str | None]:
        """Source of the `ToolSpec(...)` expression and, for custom tools, its helper."""
        name = config.get("name") or "tool"
        description = config.get("description") or None
        tool_type = _tool_type(config)

        if tool_type == "custom":
            helper = snippet_function(helper_name, config.get("customCode") or "return args", "args")
            expr = (
                f"ToolSpec(name={name!r}, kind='custom', description={description!r}, "
                f"handler={helper_name})"
            )
            return expr, helper

        if tool_type == "builtin":
            expr = (
                f"ToolSpec(name={name!r}, kind='builtin', description={description!r}, "
                f"builtin={config.get('builtin')!r})"
            )
            return expr, None

        expr = (
            f"ToolSpec(name={name!r}, kind='mcp', description={description!r}, "
            f"server_url={config.get('serverUrl')!r}, operations={selected_tools(config)!r}, "
            f"api_key={config.get('apiKey') or None!r})"
        )
        return expr, None


DESCRIPTOR = BlockTypeDescriptor(
    type="tool",
    name="Tool",
    description="External tool integration",
    long_description=(
        "Integrate external tools: MCP (Model Context Protocol) servers, "
        "custom Python functions, and built-in utilities. Connect the tool to "
        "an agent's tool handle to make it available to the model."
    ),
    category="data",
    fields=[
        ConfigField(
            id="toolType",
            type="select",
            label="Tool Type",
            default="builtin",
            options=[
                FieldOption(value="mcp", label="MCP Tool", description="Model Context Protocol server"),
                FieldOption(value="custom", label="Custom Tool", description="Custom Python function"),
                FieldOption(value="builtin", label="Built-in Tool", description="Pre-defined utility functions"),
            ],
        ),
        ConfigField(id="name", label="Tool Name", placeholder="current_time", default="current_time", required=True),
        ConfigField(
            id="serverUrl",
            label="Server URL",
            placeholder="http://localhost:3001/mcp",
            required=True,
            visible_when=_is_mcp,
        ),
        ConfigField(
            id="apiKey",
            label="API Key",
            placeholder="Optional API key for authentication",
            visible_when=_is_mcp,
        ),
        ConfigField(
            id="selectedTools",
            label="Selected Tools",
            placeholder="Comma-separated list of tool names",
            multiline=True,
            visible_when=_is_mcp,
            description="Which tools from the MCP server to use (empty means all)",
        ),
        ConfigField(
            id="allowRemote",
            type="checkbox",
            label="Allow Remote Access",
            default=True,
            visible_when=_is_mcp,
        ),
        ConfigField(
            id="customCode",
            type="code",
            label="Custom Code",
            placeholder="# `args` holds the model's arguments\nreturn args",
            default="return args",
            required=True,
            multiline=True,
            visible_when=_is_custom,
        ),
        ConfigField(
            id="builtin",
            type="select",
            label="Built-in Tool",
            required=True,
            default="current_time",
            options=[FieldOption(value=key, label=key.replace("_", " ").title()) for key in BUILTIN_TOOLS],
            visible_when=_is_builtin,
        ),
        ConfigField(
            id="description",
            label="Description",
            placeholder="Describe what this tool does...",
            multiline=True,
        ),
    ],
    codegen=ToolCodegen(),
)
