"""A generative model call, optionally with attached tools."""

from __future__ import annotations

from typing import Any

from flowshapr.blocks import tool as tool_block
from flowshapr.blocks.base import (
    BlockCodegen,
    EmitContext,
    Fragment,
    check_json,
    indent,
    parse_json_field,
)
from flowshapr.models.block_registry import BlockTypeDescriptor
from flowshapr.models.blocks import ConfigField, Diagnostic, FieldOption

PROVIDER_DEPENDENCIES = {
    "googleai": "google-genai",
    "openai": "openai",
    # Anthropic is reached through its OpenAI-compatible endpoint.
    "anthropic": "openai",
}

MODEL_OPTIONS = [
    FieldOption(value="gemini-2.5-flash", label="Gemini 2.5 Flash", description="Fast, efficient model"),
    FieldOption(value="gemini-2.5-pro", label="Gemini 2.5 Pro", description="Advanced reasoning"),
    FieldOption(value="gpt-4o-mini", label="GPT-4o Mini", description="Cost-effective GPT-4"),
    FieldOption(value="gpt-4o", label="GPT-4o", description="Latest GPT-4 model"),
    FieldOption(value="claude-3-5-sonnet-20241022", label="Claude 3.5 Sonnet"),
    FieldOption(value="claude-3-5-haiku-20241022", label="Claude 3.5 Haiku"),
]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_USER_PROMPT = "{{ input }}"


def _is_static_prompt(config: dict[str, Any]) -> bool:
    return config.get("promptType", "static") == "static"


def _is_library_prompt(config: dict[str, Any]) -> bool:
    return config.get("promptType") == "library"


def _is_json_response(config: dict[str, Any]) -> bool:
    return config.get("responseFormat") == "json"


class AgentCodegen(BlockCodegen):
    imports = ("from flowshapr.runtime.models import generate",)

    def validate(self, config: dict[str, Any]) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        if _is_static_prompt(config) and not str(config.get("userPrompt") or "").strip():
            diags.append(Diagnostic(message="User prompt is required for static prompts", field="userPrompt"))
        if _is_json_response(config):
            if not config.get("jsonSchema"):
                diags.append(Diagnostic(
                    message="JSON schema is required for JSON response format",
                    field="jsonSchema",
                ))
            else:
                diags.extend(check_json(config["jsonSchema"], "jsonSchema", "JSON schema"))
        return diags

    def get_dependencies(self, config: dict[str, Any]) -> list[str]:
        deps = list(self.dependencies)
        provider_dep = PROVIDER_DEPENDENCIES.get(config.get("provider", ""))
        if provider_dep:
            deps.append(provider_dep)
        return deps

    def emit(self, config: dict[str, Any], ctx: EmitContext) -> Fragment:
        helpers: list[str] = []

        if _is_library_prompt(config):
            scope_values = ", ".join(f"{name!r}: {expr}" for name, expr in ctx.scope.items())
            prompt_expr = f"ctx.render_library_prompt({config['promptLibraryId']!r}, {{{scope_values}}})"
            system_expr = "None"
        else:
            prompt_expr = ctx.template(config["userPrompt"])
            system_prompt = config.get("systemPrompt")
            system_expr = ctx.template(system_prompt) if system_prompt else "None"

        tool_exprs: list[str] = []
        for index, tool in enumerate(ctx.tools, start=1):
            tool_config = tool.config
            codegen = tool_block.ToolCodegen()
            helper_name = f"_tool_{ctx.binding}_{index}"
            expr, helper = codegen.spec_expr(tool_config, helper_name)
            tool_exprs.append(expr)
            if helper:
                helpers.append(helper)
            ctx.imports.update(codegen.get_imports(tool_config))
            ctx.dependencies.update(codegen.get_dependencies(tool_config))

        json_schema = parse_json_field(config.get("jsonSchema")) if _is_json_response(config) else None

        args = [
            "ctx,",
            f"provider={config.get('provider')!r},",
            f"model={config.get('model')!r},",
            f"prompt={prompt_expr},",
            f"system={system_expr},",
            f"temperature={config.get('temperature', DEFAULT_TEMPERATURE)!r},",
            f"max_tokens={config.get('maxTokens', DEFAULT_MAX_TOKENS)!r},",
            f"response_format={config.get('responseFormat', 'text')!r},",
            f"json_schema={json_schema!r},",
        ]
        if tool_exprs:
            args.append("tools=[")
            args.extend(indent([f"{expr}," for expr in tool_exprs]))
            args.append("],")

        lines = [f"{ctx.binding} = await generate(", *indent(args), ")"]
        return Fragment(lines=lines, helpers=helpers)


DESCRIPTOR = BlockTypeDescriptor(
    type="agent",
    name="Agent",
    description="AI model for text generation and reasoning",
    long_description=(
        "Configure AI agents with different providers (Google AI, OpenAI, "
        "Anthropic), models, and parameters for text generation, reasoning, "
        "and structured output. Tools connected to the agent's tool handle "
        "are offered to the model."
    ),
    category="genai",
    fields=[
        ConfigField(
            id="provider",
            type="select",
            label="Provider",
            required=True,
            default="googleai",
            options=[
                FieldOption(value="googleai", label="Google AI", description="Google Gemini models"),
                FieldOption(value="openai", label="OpenAI", description="GPT models"),
                FieldOption(value="anthropic", label="Anthropic", description="Claude models"),
            ],
        ),
        ConfigField(
            id="model",
            label="Model",
            required=True,
            default="gemini-2.5-flash",
            options=MODEL_OPTIONS,
        ),
        ConfigField(
            id="promptType",
            type="select",
            label="Prompt Type",
            default="static",
            options=[
                FieldOption(value="static", label="Static Prompts", description="Define prompts directly"),
                FieldOption(value="library", label="Prompt Library", description="Use saved prompts"),
            ],
        ),
        ConfigField(
            id="systemPrompt",
            label="System Prompt",
            placeholder="You are a helpful assistant...",
            multiline=True,
            visible_when=_is_static_prompt,
        ),
        ConfigField(
            id="userPrompt",
            label="User Prompt",
            placeholder="Process this input: {{ input }}",
            default=DEFAULT_USER_PROMPT,
            multiline=True,
            visible_when=_is_static_prompt,
        ),
        ConfigField(
            id="promptLibraryId",
            label="Prompt Library ID",
            placeholder="Select from prompt library...",
            required=True,
            visible_when=_is_library_prompt,
        ),
        ConfigField(
            id="temperature",
            type="number",
            label="Temperature",
            default=DEFAULT_TEMPERATURE,
            min=0,
            max=2,
            description="Creativity level (0=deterministic, 2=very creative)",
        ),
        ConfigField(
            id="maxTokens",
            type="number",
            label="Max Tokens",
            default=DEFAULT_MAX_TOKENS,
            min=1,
            max=8192,
            description="Maximum response length",
        ),
        ConfigField(
            id="responseFormat",
            type="select",
            label="Response Format",
            default="text",
            options=[
                FieldOption(value="text", label="Text", description="Plain text response"),
                FieldOption(value="json", label="JSON", description="Structured JSON output"),
            ],
        ),
        ConfigField(
            id="jsonSchema",
            type="json",
            label="JSON Schema",
            placeholder='{"type": "object", "properties": {...}}',
            multiline=True,
            visible_when=_is_json_response,
            description="JSON schema for structured output",
        ),
    ],
    codegen=AgentCodegen(),
)
