"""
Tests for the flow compiler.

Generated modules are executed in-process: the code is compiled into a fresh
namespace and its `run_flow` entry point awaited.
"""

import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from flowshapr.models.blocks import BlockInstance, Edge, FlowVariable
from flowshapr.runtime.context import BlockExecutionError, FlowContext
from flowshapr.services.code_generator import binding_name, compile_flow, toposort


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

INPUT = {"inputType": "variable", "variableName": "x"}
TEXT_OUTPUT = {"format": "text"}


def block(block_id, block_type, config=None):
    return BlockInstance(id=block_id, block_type=block_type, config=config or {})


def edge(source, target, **handles):
    return Edge(id=f"{source}-{target}", source=source, target=target, **handles)


def transform(code):
    return {"code": code}


def load_flow(code):
    namespace = {}
    exec(compile(code, "<flow>", "exec"), namespace)
    return namespace


def compile_ok(blocks, edges, variables=None):
    program = compile_flow(blocks, edges, variables)
    assert program.is_valid, [e.message for e in program.errors]
    return program


def branching_flow():
    blocks = [
        block("start", "input", INPUT),
        block("check", "condition", {"condition": "data > 5"}),
        block("big", "transform", transform("return 'big'")),
        block("small", "transform", transform("return 'small'")),
        block("out_big", "output", TEXT_OUTPUT),
        block("out_small", "output", TEXT_OUTPUT),
    ]
    edges = [
        edge("start", "check"),
        edge("check", "big", sourceHandle="true"),
        edge("check", "small", sourceHandle="false"),
        edge("big", "out_big"),
        edge("small", "out_small"),
    ]
    return blocks, edges


# ---------------------------------------------------------------------------
# Module shape
# ---------------------------------------------------------------------------


class TestModuleShape:
    def test_entry_point_and_variables(self):
        program = compile_ok(
            [block("start", "input", INPUT), block("end", "output", TEXT_OUTPUT)],
            [edge("start", "end")],
        )
        assert program.entry_point == "run_flow"
        assert program.execution_order == ["start", "end"]
        assert [v.name for v in program.variables] == ["x"]
        assert "ENTRY_POINT = 'run_flow'" in program.code
        assert "async def run_flow(input, context=None):" in program.code

        module = load_flow(program.code)
        assert module["ENTRY_POINT"] == "run_flow"
        assert module["FLOW_VARIABLES"] == [{"name": "x", "type": "string", "default": None}]

    def test_module_docstring_shows_input_shape(self):
        blocks = [block("start", "input", INPUT), block("end", "output", TEXT_OUTPUT)]
        single = compile_ok(blocks, [edge("start", "end")])
        assert single.code.splitlines()[0] == '"""Compiled flow. Run with `await run_flow(x)`."""'

        several = compile_ok(blocks, [edge("start", "end")], [FlowVariable(name="tone", source="manual")])
        assert several.code.splitlines()[0] == (
            '"""Compiled flow. Run with `await run_flow({\'x\': ..., \'tone\': ...})`."""'
        )

    def test_imports_only_runtime(self):
        program = compile_ok(
            [block("start", "input", INPUT), block("t", "transform", transform("return data")),
             block("end", "output", TEXT_OUTPUT)],
            [edge("start", "t"), edge("t", "end")],
        )
        assert program.imports == sorted(program.imports)
        assert "from flowshapr.runtime.context import FlowContext" in program.imports
        assert "from flowshapr.runtime.output import format_output" in program.imports
        assert all(line.startswith("from flowshapr.runtime") for line in program.imports)
        assert program.dependencies == ["flowshapr"]

    def test_compilation_is_deterministic(self):
        blocks, edges = branching_flow()
        assert compile_flow(blocks, edges).code == compile_flow(blocks, edges).code

    def test_accepts_editor_shaped_dicts(self):
        blocks = [
            {"id": "start", "type": "input", "data": {"config": INPUT}},
            {"id": "end", "type": "output", "data": {"config": TEXT_OUTPUT}},
        ]
        edges = [{"id": "e1", "source": "start", "target": "end", "sourceHandle": None}]
        program = compile_flow(blocks, edges)
        assert program.is_valid
        assert program.execution_order == ["start", "end"]


class TestOrdering:
    def test_ties_broken_by_declaration_order(self):
        blocks = [
            block("start", "input", INPUT),
            block("b", "transform", transform("return data + '-b'")),
            block("a", "transform", transform("return data + '-a'")),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [edge("start", "a"), edge("start", "b"), edge("a", "end"), edge("b", "end")]
        program = compile_ok(blocks, edges)
        assert program.execution_order == ["start", "b", "a", "end"]

    def test_toposort_detects_cycle(self):
        from flowshapr.services.code_generator import CompilationError

        with pytest.raises(CompilationError) as info:
            toposort(["a", "b"], [edge("a", "b"), edge("b", "a")])
        assert info.value.diagnostics[0].path == ["a", "b"]

    def test_cycle_makes_program_invalid(self):
        blocks = [
            block("start", "input", INPUT),
            block("a", "transform", transform("return data")),
            block("b", "transform", transform("return data")),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [edge("start", "a"), edge("a", "b"), edge("b", "a"), edge("b", "end")]
        program = compile_flow(blocks, edges)
        assert not program.is_valid
        assert program.code == ""
        assert any(e.path == ["a", "b", "a"] for e in program.errors)

    def test_binding_names_are_unique_identifiers(self):
        taken = set()
        assert binding_name("agent-1", taken) == "agent_1_out"
        assert binding_name("agent_1", taken) == "agent_1_2_out"
        assert binding_name("in", taken) == "b_in_out"
        assert binding_name("1st", taken) == "b_1st_out"


# ---------------------------------------------------------------------------
# Running compiled flows
# ---------------------------------------------------------------------------


class TestExecution:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        program = compile_ok(
            [block("start", "input", INPUT), block("end", "output", TEXT_OUTPUT)],
            [edge("start", "end")],
        )
        run_flow = load_flow(program.code)["run_flow"]
        assert await run_flow({"x": "hello"}) == "hello"
        assert await run_flow("bare value") == "bare value"

    @pytest.mark.asyncio
    async def test_static_input(self):
        program = compile_ok(
            [block("start", "input", {"inputType": "static", "staticValue": "fixed"}),
             block("end", "output", TEXT_OUTPUT)],
            [edge("start", "end")],
        )
        assert program.variables == []
        assert await load_flow(program.code)["run_flow"](None) == "fixed"

    @pytest.mark.asyncio
    async def test_first_active_upstream_feeds_join(self):
        blocks = [
            block("start", "input", INPUT),
            block("b", "transform", transform("return data + '-b'")),
            block("a", "transform", transform("return data + '-a'")),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [edge("start", "a"), edge("start", "b"), edge("a", "end"), edge("b", "end")]
        program = compile_ok(blocks, edges)
        assert "from flowshapr.runtime.context import first_active" in program.imports
        assert await load_flow(program.code)["run_flow"]("x") == "x-a"

    @pytest.mark.asyncio
    async def test_condition_branches(self):
        program = compile_ok(*branching_flow())
        run_flow = load_flow(program.code)["run_flow"]

        ctx = FlowContext()
        assert await run_flow({"x": 10}, ctx) == "big"
        assert [t.block_id for t in ctx.trace] == ["start", "check", "big", "out_big"]
        assert ctx.trace[1].output is True

        ctx = FlowContext()
        assert await run_flow({"x": 1}, ctx) == "small"
        assert [t.block_id for t in ctx.trace] == ["start", "check", "small", "out_small"]

    @pytest.mark.asyncio
    async def test_condition_reads_dict_keys_as_attributes(self):
        blocks = [
            block("start", "input", INPUT),
            block("check", "condition", {"condition": "data.score > 0.5"}),
            block("yes", "output", TEXT_OUTPUT),
        ]
        edges = [edge("start", "check"), edge("check", "yes", sourceHandle="true")]
        run_flow = load_flow(compile_ok(blocks, edges).code)["run_flow"]
        assert await run_flow({"x": {"score": 0.9}}) == '{"score": 0.9}'
        # No output ran; the last active value comes back.
        assert await run_flow({"x": {"score": 0.1}}) == {"score": 0.1}

    @pytest.mark.asyncio
    async def test_orphan_blocks_never_run(self):
        blocks = [
            block("start", "input", INPUT),
            block("end", "output", TEXT_OUTPUT),
            block("orphan", "transform", transform("raise ValueError('should not run')")),
        ]
        program = compile_ok(blocks, [edge("start", "end")])
        assert "active['orphan'] = False" in program.code

        ctx = FlowContext()
        assert await load_flow(program.code)["run_flow"]("hi", ctx) == "hi"
        assert "orphan" not in [t.block_id for t in ctx.trace]

    @pytest.mark.asyncio
    async def test_block_failure_carries_block_id(self):
        blocks = [
            block("start", "input", INPUT),
            block("fail", "transform", transform("raise ValueError('boom')")),
            block("end", "output", TEXT_OUTPUT),
        ]
        program = compile_ok(blocks, [edge("start", "fail"), edge("fail", "end")])
        ctx = FlowContext()
        with pytest.raises(BlockExecutionError) as info:
            await load_flow(program.code)["run_flow"]("hi", ctx)
        assert info.value.block_id == "fail"
        assert str(info.value) == "boom"
        assert ctx.trace[-1].error == "boom"

    @pytest.mark.asyncio
    async def test_json_output_with_schema(self):
        schema = {"type": "object", "required": ["a"]}
        blocks = [
            block("start", "input", INPUT),
            block("shape", "transform", transform("return {'a': data}")),
            block("end", "output", {"format": "json", "schema": schema}),
        ]
        program = compile_ok(blocks, [edge("start", "shape"), edge("shape", "end")])
        assert await load_flow(program.code)["run_flow"](1) == {"a": 1}

    @pytest.mark.asyncio
    async def test_json_output_schema_violation(self):
        schema = {"type": "object", "required": ["b"]}
        blocks = [
            block("start", "input", INPUT),
            block("shape", "transform", transform("return {'a': data}")),
            block("end", "output", {"format": "json", "schema": schema}),
        ]
        program = compile_ok(blocks, [edge("start", "shape"), edge("shape", "end")])
        with pytest.raises(BlockExecutionError) as info:
            await load_flow(program.code)["run_flow"](1)
        assert info.value.block_id == "end"

    @pytest.mark.asyncio
    async def test_interrupt_stops_the_flow(self):
        blocks = [
            block("start", "input", INPUT),
            block("review", "interrupt", {"message": "Review {{ input }}", "allowedResponses": ["ok", "no"]}),
            block("end", "output", TEXT_OUTPUT),
        ]
        program = compile_ok(blocks, [edge("start", "review"), edge("review", "end")])

        ctx = FlowContext(execution_id="exec_test")
        result = await load_flow(program.code)["run_flow"]("draft", ctx)
        assert result["status"] == "awaiting_response"
        assert result["message"] == "Review draft"
        assert result["blockId"] == "review"
        assert result["data"] == "draft"
        assert result["allowedResponses"] == ["ok", "no"]
        assert ctx.interrupted
        assert "end" not in [t.block_id for t in ctx.trace]


# ---------------------------------------------------------------------------
# Agents, templates and tools
# ---------------------------------------------------------------------------


class TestAgents:
    def test_unresolved_template_variable_is_an_error(self):
        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "About {{ topic }}"}),
            block("end", "output", TEXT_OUTPUT),
        ]
        program = compile_flow(blocks, [edge("start", "agent"), edge("agent", "end")])
        assert not program.is_valid
        assert program.code == ""
        assert [e.message for e in program.errors] == ["Unresolved variable(s) in block 'agent': topic"]

    def test_template_placeholders_bound_to_variables_and_upstream(self):
        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {
                "provider": "openai", "model": "gpt-4o", "userPrompt": "About {{ x }} given {{ input }}",
            }),
            block("end", "output", TEXT_OUTPUT),
        ]
        program = compile_ok(blocks, [edge("start", "agent"), edge("agent", "end")])
        assert "'x': variables['x']" in program.code
        assert "'input': start_out" in program.code
        assert "openai" in program.dependencies

    @pytest.mark.asyncio
    async def test_agent_output_flows_downstream(self, monkeypatch):
        calls = []

        async def fake_generate(ctx, **kwargs):
            calls.append(kwargs)
            return f"echo: {kwargs['prompt']}"

        monkeypatch.setattr("flowshapr.runtime.models.generate", fake_generate)

        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {
                "provider": "googleai",
                "model": "gemini-2.5-flash",
                "systemPrompt": "Be {{ tone }}.",
                "userPrompt": "About {{ x }}",
            }),
            block("end", "output", TEXT_OUTPUT),
        ]
        program = compile_ok(
            blocks,
            [edge("start", "agent"), edge("agent", "end")],
            [FlowVariable(name="tone", source="manual", default_value="calm")],
        )
        result = await load_flow(program.code)["run_flow"]({"x": "owls"})
        assert result == "echo: About owls"
        assert calls[0]["system"] == "Be calm."
        assert calls[0]["temperature"] == 0.7
        assert calls[0]["max_tokens"] == 1000

    def test_tools_attach_to_agent(self):
        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "{{ input }}"}),
            block("counter", "tool", {"toolType": "builtin", "name": "word_count", "builtin": "word_count"}),
            block("shout", "tool", {"toolType": "custom", "name": "shout", "customCode": "return str(args).upper()"}),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [
            edge("start", "agent"),
            edge("counter", "agent", targetHandle="tool"),
            edge("shout", "agent", targetHandle="tool"),
            edge("agent", "end"),
        ]
        program = compile_ok(blocks, edges)
        assert program.execution_order == ["start", "agent", "end"]
        assert "ToolSpec(name='word_count', kind='builtin'" in program.code
        assert "def _tool_agent_out_2(args):" in program.code
        assert "handler=_tool_agent_out_2" in program.code
        assert "from flowshapr.runtime.tools import ToolSpec" in program.imports
        load_flow(program.code)

    def test_tool_edge_from_agent_side_attaches_once(self):
        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "{{ input }}"}),
            block("counter", "tool", {"toolType": "builtin", "name": "word_count", "builtin": "word_count"}),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [
            edge("start", "agent"),
            edge("agent", "counter", sourceHandle="tool"),
            edge("counter", "agent", targetHandle="tool"),
            edge("agent", "end"),
        ]
        program = compile_ok(blocks, edges)
        assert program.execution_order == ["start", "agent", "end"]
        assert program.code.count("ToolSpec(name='word_count'") == 1
        load_flow(program.code)

    def test_mcp_tool_adds_httpx_dependency(self):
        blocks = [
            block("start", "input", INPUT),
            block("agent", "agent", {"provider": "openai", "model": "gpt-4o", "userPrompt": "{{ input }}"}),
            block("search", "tool", {"toolType": "mcp", "name": "search", "serverUrl": "http://localhost:3001/mcp"}),
            block("end", "output", TEXT_OUTPUT),
        ]
        edges = [edge("start", "agent"), edge("search", "agent", targetHandle="tool"), edge("agent", "end")]
        program = compile_ok(blocks, edges)
        assert "httpx" in program.dependencies
        assert "server_url='http://localhost:3001/mcp'" in program.code
