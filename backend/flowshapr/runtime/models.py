"""
Model calls made by agent blocks.

Google AI goes through `google-genai`; OpenAI and Anthropic go through the
`openai` SDK (Anthropic via its OpenAI-compatible endpoint). Keys come from
the flow context first and the environment second.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from google import genai
from google.genai import types
from openai import AsyncOpenAI

from flowshapr.runtime.context import FlowContext
from flowshapr.runtime.tools import ToolSpec, collect_declarations

logger = logging.getLogger(__name__)

PROVIDER_KEY_NAMES = {
    "googleai": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/"
MAX_TOOL_ROUNDS = 5

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class MissingAPIKeyError(RuntimeError):
    def __init__(self, provider: str, key_name: str):
        self.provider = provider
        self.key_name = key_name
        super().__init__(f"{key_name} is not configured for provider '{provider}'")


class ModelResponseError(RuntimeError):
    pass


def api_key_for(ctx: FlowContext, provider: str) -> str:
    key_name = PROVIDER_KEY_NAMES.get(provider)
    if key_name is None:
        raise ValueError(f"Unsupported provider: {provider}")
    key = ctx.credentials.get(provider) or os.getenv(key_name)
    if not key:
        raise MissingAPIKeyError(provider, key_name)
    return key


def parse_json_reply(text: str) -> Any:
    cleaned = (text or "").strip()
    match = _FENCE_PATTERN.match(cleaned)
    if match:
        cleaned = match.group(1)
    try:
        return json.loads(cleaned)
    except ValueError as exc:
        raise ModelResponseError(f"Model did not return valid JSON: {exc}") from exc


async def generate(
    ctx: FlowContext,
    *,
    provider: str,
    model: str,
    prompt: str,
    system: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1000,
    response_format: str = "text",
    json_schema: dict[str, Any] | None = None,
    tools: list[ToolSpec] | None = None,
) -> Any:
    """Run one model call (with tool rounds) and return text, or parsed JSON in json mode."""
    api_key = api_key_for(ctx, provider)
    logger.info("[%s] Calling %s model '%s'", ctx.execution_id, provider, model)

    if provider == "googleai":
        text = await _generate_google(
            api_key, model, prompt, system, temperature, max_tokens, response_format, json_schema, tools or [],
        )
    else:
        text = await _generate_openai_compatible(
            provider, api_key, model, prompt, system, temperature, max_tokens, response_format, json_schema, tools or [],
        )

    if response_format == "json":
        return parse_json_reply(text)
    return text


# ---------------------------------------------------------------------------
# Google AI
# ---------------------------------------------------------------------------


async def _generate_google(
    api_key: str,
    model: str,
    prompt: str,
    system: str | None,
    temperature: float,
    max_tokens: int,
    response_format: str,
    json_schema: dict[str, Any] | None,
    tools: list[ToolSpec],
) -> str:
    client = genai.Client(api_key=api_key)
    declared = await collect_declarations(tools)

    config_kwargs: dict[str, Any] = {
        "temperature": temperature,
        "max_output_tokens": max_tokens,
    }
    if system:
        config_kwargs["system_instruction"] = system
    if response_format == "json":
        config_kwargs["response_mime_type"] = "application/json"
        if json_schema:
            config_kwargs["response_schema"] = json_schema
    if declared:
        config_kwargs["tools"] = [types.Tool(function_declarations=[
            types.FunctionDeclaration(
                name=name,
                description=declaration["description"],
                parameters_json_schema=declaration["parameters"],
            )
            for name, (_, declaration) in declared.items()
        ])]
    config = types.GenerateContentConfig(**config_kwargs)

    contents: list[types.Content] = [types.Content(role="user", parts=[types.Part.from_text(text=prompt)])]
    for _ in range(MAX_TOOL_ROUNDS + 1):
        response = await client.aio.models.generate_content(model=model, contents=contents, config=config)
        calls = response.function_calls or []
        if not calls or not declared:
            return response.text or ""

        contents.append(response.candidates[0].content)
        parts = []
        for call in calls:
            result = await _run_tool(declared, call.name, dict(call.args or {}))
            parts.append(types.Part.from_function_response(name=call.name, response={"result": result}))
        contents.append(types.Content(role="user", parts=parts))

    raise ModelResponseError(f"Model kept calling tools after {MAX_TOOL_ROUNDS} rounds")


# ---------------------------------------------------------------------------
# OpenAI / Anthropic (OpenAI-compatible)
# ---------------------------------------------------------------------------


async def _generate_openai_compatible(
    provider: str,
    api_key: str,
    model: str,
    prompt: str,
    system: str | None,
    temperature: float,
    max_tokens: int,
    response_format: str,
    json_schema: dict[str, Any] | None,
    tools: list[ToolSpec],
) -> str:
    base_url = ANTHROPIC_BASE_URL if provider == "anthropic" else None
    client = AsyncOpenAI(api_key=api_key, base_url=base_url)
    declared = await collect_declarations(tools)

    messages: list[dict[str, Any]] = []
    if response_format == "json" and provider == "anthropic":
        # The compatibility endpoint ignores response_format; ask in the prompt instead.
        schema_note = f" matching this JSON schema: {json.dumps(json_schema)}" if json_schema else ""
        system = f"{system or ''}\n\nRespond only with JSON{schema_note}.".strip()
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    request: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if response_format == "json" and provider == "openai":
        if json_schema:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "flow_output", "schema": json_schema},
            }
        else:
            request["response_format"] = {"type": "json_object"}
    if declared:
        request["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": declaration["description"],
                    "parameters": declaration["parameters"],
                },
            }
            for name, (_, declaration) in declared.items()
        ]

    for _ in range(MAX_TOOL_ROUNDS + 1):
        completion = await client.chat.completions.create(messages=messages, **request)
        message = completion.choices[0].message
        if not message.tool_calls or not declared:
            return message.content or ""

        messages.append(message.model_dump(exclude_none=True))
        for call in message.tool_calls:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except ValueError:
                arguments = {}
            result = await _run_tool(declared, call.function.name, arguments)
            messages.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(result, default=str),
            })

    raise ModelResponseError(f"Model kept calling tools after {MAX_TOOL_ROUNDS} rounds")


async def _run_tool(
    declared: dict[str, tuple[ToolSpec, dict[str, Any]]],
    name: str,
    arguments: dict[str, Any],
) -> Any:
    entry = declared.get(name)
    if entry is None:
        return {"error": f"Unknown tool: {name}"}
    tool, _ = entry
    return await tool.call(name, arguments)
