"""
Tests for the block registry and the built-in block definitions.
"""

import json
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from flowshapr.blocks import BUILTIN_DESCRIPTORS, register_builtin_blocks
from flowshapr.blocks import input as input_block
from flowshapr.models.block_registry import (
    BlockRegistry,
    BlockTypeNotFoundError,
    DuplicateBlockTypeError,
    block_registry,
)


BUILTIN_TYPES = ["input", "agent", "condition", "tool", "output", "interrupt", "transform"]


def messages(diags):
    return [d.message for d in diags]


class TestRegistration:
    def test_builtin_types_registered_in_order(self):
        assert block_registry.get_types() == BUILTIN_TYPES

    def test_register_builtin_blocks_is_idempotent(self):
        register_builtin_blocks()
        register_builtin_blocks()
        assert len(block_registry.list()) == len(BUILTIN_DESCRIPTORS)

    def test_duplicate_registration_raises(self):
        registry = BlockRegistry()
        registry.register(input_block.DESCRIPTOR)
        with pytest.raises(DuplicateBlockTypeError):
            registry.register(input_block.DESCRIPTOR)

    def test_get_unknown_raises_and_find_returns_none(self):
        with pytest.raises(BlockTypeNotFoundError):
            block_registry.get("mystery")
        assert block_registry.find("mystery") is None
        assert "mystery" not in block_registry
        assert "agent" in block_registry

    def test_stats(self):
        stats = block_registry.get_stats()
        assert stats["count"] == 7
        assert stats["byCategory"] == {
            "control": 1,
            "data": 2,
            "genai": 1,
            "input": 1,
            "logic": 1,
            "output": 1,
        }

    def test_client_metadata_is_json_safe(self):
        metadata = block_registry.client_metadata()
        assert [m["type"] for m in metadata] == BUILTIN_TYPES
        encoded = json.dumps(metadata)
        assert "codegen" not in encoded
        assert "visible_when" not in encoded


class TestDefaultConfig:
    def test_agent_defaults(self):
        config = block_registry.get_default_config("agent")
        assert config["provider"] == "googleai"
        assert config["model"] == "gemini-2.5-flash"
        assert config["temperature"] == 0.7
        assert config["maxTokens"] == 1000
        assert config["userPrompt"] == "{{ input }}"

    def test_defaults_are_fresh_copies(self):
        first = block_registry.get_default_config("agent")
        first["temperature"] = 1.9
        second = block_registry.get_default_config("agent")
        assert second["temperature"] == 0.7

    @pytest.mark.parametrize("block_type", BUILTIN_TYPES)
    def test_defaults_pass_validation(self, block_type):
        config = block_registry.get_default_config(block_type)
        assert block_registry.validate_config(block_type, config) == []


class TestValidateConfig:
    def test_unknown_type(self):
        diags = block_registry.validate_config("mystery", {})
        assert messages(diags) == ["Unknown block type: mystery"]

    def test_output_requires_format(self):
        diags = block_registry.validate_config("output", {})
        assert [d.field for d in diags] == ["format"]

    def test_output_format_must_be_known(self):
        diags = block_registry.validate_config("output", {"format": "xml"})
        assert len(diags) == 1
        assert "must be one of: text, json, structured" in diags[0].message

    def test_output_schema_must_be_json(self):
        diags = block_registry.validate_config("output", {"format": "json", "schema": "{not json"})
        assert messages(diags) == ["Invalid JSON in output schema"]

    def test_agent_minimal_config(self):
        assert block_registry.validate_config("agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "Hi"}) == []

    def test_agent_requires_provider_and_model(self):
        diags = block_registry.validate_config("agent", {})
        assert {d.field for d in diags} == {"provider", "model", "userPrompt"}

    @pytest.mark.parametrize("user_prompt", ["", "   ", None])
    def test_agent_static_prompt_needs_user_prompt(self, user_prompt):
        diags = block_registry.validate_config(
            "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": user_prompt}
        )
        assert messages(diags) == ["User prompt is required for static prompts"]
        assert diags[0].field == "userPrompt"

    def test_agent_temperature_range(self):
        diags = block_registry.validate_config(
            "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "Hi", "temperature": 3}
        )
        assert messages(diags) == ["Temperature must be at most 2"]

    def test_agent_json_response_needs_schema(self):
        diags = block_registry.validate_config(
            "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "Hi", "responseFormat": "json"}
        )
        assert messages(diags) == ["JSON schema is required for JSON response format"]

    def test_agent_library_prompt_needs_id(self):
        diags = block_registry.validate_config(
            "agent", {"provider": "openai", "model": "gpt-4o", "promptType": "library"}
        )
        assert [d.field for d in diags] == ["promptLibraryId"]

    def test_input_static_needs_value(self):
        diags = block_registry.validate_config("input", {"inputType": "static"})
        assert [d.field for d in diags] == ["staticValue"]

    def test_input_variable_name_must_be_identifier(self):
        diags = block_registry.validate_config("input", {"inputType": "variable", "variableName": "1st"})
        assert [d.field for d in diags] == ["variableName"]

    @pytest.mark.parametrize(
        "condition, expected",
        [
            ("data >", "Invalid Python syntax"),
            ("__import__('os')", "Code contains potentially unsafe calls"),
            ("data.__class__", "Code contains potentially unsafe attribute access"),
            ("open('/etc/passwd')", "Code contains potentially unsafe calls"),
        ],
    )
    def test_condition_rejects_bad_expressions(self, condition, expected):
        diags = block_registry.validate_config("condition", {"condition": condition})
        assert len(diags) == 1
        assert diags[0].message.startswith(expected)

    def test_condition_function_body(self):
        config = {"conditionType": "function", "condition": "if data:\n    return True\nreturn False"}
        assert block_registry.validate_config("condition", config) == []

    def test_transform_rejects_imports(self):
        diags = block_registry.validate_config("transform", {"code": "import os\nreturn data"})
        assert messages(diags) == ["Imports are not allowed in block code"]

    def test_tool_mcp_needs_server_url(self):
        diags = block_registry.validate_config("tool", {"toolType": "mcp", "name": "search"})
        assert [d.field for d in diags] == ["serverUrl"]

    def test_tool_mcp_url_format(self):
        diags = block_registry.validate_config(
            "tool", {"toolType": "mcp", "name": "search", "serverUrl": "ftp://example.com"}
        )
        assert messages(diags) == ["Invalid URL format"]

    def test_tool_mcp_remote_disabled(self):
        config = {
            "toolType": "mcp",
            "name": "search",
            "serverUrl": "https://example.com/mcp",
            "allowRemote": False,
        }
        diags = block_registry.validate_config("tool", config)
        assert messages(diags) == ["Remote MCP servers are disabled for this tool"]

    def test_tool_builtin_must_be_known(self):
        diags = block_registry.validate_config(
            "tool", {"toolType": "builtin", "name": "x", "builtin": "teleport"}
        )
        assert [d.field for d in diags] == ["builtin"]

    def test_interrupt_timeout_positive(self):
        diags = block_registry.validate_config("interrupt", {"timeout": 0})
        assert [d.field for d in diags] == ["timeout"]

    def test_interrupt_allowed_responses_list(self):
        diags = block_registry.validate_config("interrupt", {"allowedResponses": '{"a": 1}'})
        assert messages(diags) == ["Allowed responses must be a list"]
