"""Tests for request dispatch through the server facade."""

from __future__ import annotations

import json
import logging
import threading

import anyio
import pytest

from mcp_daemon import (
    ErrorCode,
    MCPServer,
    PublicError,
    Request,
    Response,
    ServerBuilder,
    ToolExecutionError,
    UriTemplate,
    raise_mcp_error,
)
from mcp_daemon.models import Completion, Implementation, Resource


def greet(who: str, times: int = 1) -> str:
    """Greet someone."""
    return " ".join([f"Hello, {who}!"] * times)


def by_x(x: str) -> str:
    return f"variable {x}"


def literal() -> str:
    return "literal"


def post(user: int, slug: str) -> dict:
    return {"user": user, "slug": slug}


def quota() -> str:
    raise PublicError("Quota exceeded", {"retryAfter": 30})


def limited() -> str:
    raise_mcp_error("Too many requests", {"limit": 5}, code=-32000)


def explode() -> str:
    raise RuntimeError("secret detail")


def failing_tool(value: int) -> str:
    raise ToolExecutionError(f"Value {value} is out of range")


def odd_prompt() -> object:
    return object()


def build(calls: list[str]) -> MCPServer:
    def record(message: str) -> str:
        calls.append(message)
        return message

    builder = ServerBuilder(name="test-daemon", version="1.2.3", instructions="Be nice.")
    builder.register_prompt("greet", greet)
    builder.register_prompt("quota", quota)
    builder.register_prompt("odd", odd_prompt)
    builder.register_prompt("limited", limited)
    builder.register_resource("/a/{x}", by_x)
    builder.register_resource("/a/b", literal, mime_type="text/plain")
    builder.register_resource("my_app://users/{user}/posts/{slug}", post)
    builder.register_tool("record", record)
    builder.register_tool("explode", explode)
    builder.register_tool("failing", failing_tool)
    return builder.build()


@pytest.fixture()
def calls() -> list[str]:
    return []


@pytest.fixture()
def server(calls: list[str]) -> MCPServer:
    return build(calls)


@pytest.mark.anyio()
async def test_unknown_method(server: MCPServer) -> None:
    response = await server.handle("resources/subscribe")

    assert response.to_dict() == {
        "error": {
            "code": -32601,
            "message": "Method not found: resources/subscribe",
            "data": {"method": "resources/subscribe"},
        }
    }


@pytest.mark.anyio()
async def test_initialize_reports_identity_and_capabilities(server: MCPServer) -> None:
    response = await server.handle("initialize", {"protocolVersion": "2025-03-26"})

    result = response.to_dict()["result"]
    assert result["serverInfo"] == {"name": "test-daemon", "version": "1.2.3"}
    assert result["instructions"] == "Be nice."
    assert set(result["capabilities"]) == {"prompts", "resources", "tools"}


@pytest.mark.anyio()
async def test_ping(server: MCPServer) -> None:
    assert (await server.dispatch(Request("ping"))).to_dict() == {"result": {}}


def test_failure_response_is_the_error_payload() -> None:
    error = PublicError("Quota exceeded", {"retryAfter": 30}, code=-32000)

    assert Response.failure(error).to_dict() == error.to_dict()


def test_error_codes_are_the_ones_the_core_emits() -> None:
    assert {int(code) for code in ErrorCode} == {-32601, -32602, -32603, -32002}


class TestPrompts:
    """prompts/list and prompts/get."""

    @pytest.mark.anyio()
    async def test_list_describes_arguments(self, server: MCPServer) -> None:
        # Act
        response = await server.handle("prompts/list")

        # Assert
        prompts = response.to_dict()["result"]["prompts"]
        assert prompts[0] == {
            "name": "greet",
            "description": "Greet someone.",
            "arguments": [
                {"name": "who", "required": True},
                {"name": "times", "required": False},
            ],
        }

    @pytest.mark.anyio()
    async def test_get_parses_string_arguments(self, server: MCPServer) -> None:
        # Act
        response = await server.handle(
            "prompts/get", {"name": "greet", "arguments": {"who": "Ada", "times": "2"}}
        )

        # Assert
        message = response.to_dict()["result"]["messages"][0]
        assert message["content"]["text"] == "Hello, Ada! Hello, Ada!"

    @pytest.mark.anyio()
    async def test_missing_argument_is_invalid_params(self, server: MCPServer) -> None:
        response = await server.handle("prompts/get", {"name": "greet"})

        assert response.error is not None
        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.message == "Missing required argument 'who'"

    @pytest.mark.anyio()
    async def test_unknown_prompt(self, server: MCPServer) -> None:
        response = await server.handle("prompts/get", {"name": "missing"})

        assert response.error is not None
        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.message == "Prompt 'missing' not found"

    @pytest.mark.anyio()
    async def test_malformed_params(self, server: MCPServer) -> None:
        response = await server.handle("prompts/get", {"arguments": {}})

        assert response.error is not None
        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.data["errors"][0]["field"] == "name"

    @pytest.mark.anyio()
    async def test_public_error_is_disclosed(self, server: MCPServer) -> None:
        response = await server.handle("prompts/get", {"name": "quota"})

        assert response.error is not None
        assert response.error.message == "Quota exceeded"
        assert response.error.data == {"retryAfter": 30}

    @pytest.mark.anyio()
    async def test_raise_mcp_error_sets_code(self, server: MCPServer) -> None:
        response = await server.handle("prompts/get", {"name": "limited"})

        assert response.to_dict() == {
            "error": {
                "code": -32000,
                "message": "Too many requests",
                "data": {"limit": 5},
            }
        }

    @pytest.mark.anyio()
    async def test_unconvertible_value_is_internal_error(
        self, server: MCPServer
    ) -> None:
        response = await server.handle("prompts/get", {"name": "odd"})

        assert response.error is not None
        assert response.error.code == ErrorCode.INTERNAL_ERROR


class TestResources:
    """resources/list, resources/templates/list and resources/read."""

    @pytest.mark.anyio()
    async def test_list_contains_only_concrete_uris(self, server: MCPServer) -> None:
        response = await server.handle("resources/list")

        assert response.to_dict()["result"]["resources"] == [
            {"uri": "/a/b", "name": "literal", "mimeType": "text/plain"}
        ]

    @pytest.mark.anyio()
    async def test_templates_list(self, server: MCPServer) -> None:
        response = await server.handle("resources/templates/list")

        templates = response.to_dict()["result"]["resourceTemplates"]
        assert [t["uriTemplate"] for t in templates] == [
            "/a/{x}",
            "my_app://users/{user}/posts/{slug}",
        ]

    @pytest.mark.anyio()
    async def test_literal_wins_over_template(self, server: MCPServer) -> None:
        literal_read = await server.handle("resources/read", {"uri": "/a/b"})
        variable_read = await server.handle("resources/read", {"uri": "/a/c"})

        assert literal_read.to_dict()["result"]["contents"] == [
            {"uri": "/a/b", "mimeType": "text/plain", "text": "literal"}
        ]
        assert variable_read.to_dict()["result"]["contents"][0]["text"] == "variable c"

    @pytest.mark.anyio()
    async def test_bindings_reproduce_the_uri(self, server: MCPServer) -> None:
        """The handler sees the values that expand back to the requested URI."""
        uri = "my_app://users/7/posts/hello%20world"

        response = await server.handle("resources/read", {"uri": uri})

        contents = response.to_dict()["result"]["contents"][0]
        assert contents["mimeType"] == "application/json"
        bindings = json.loads(contents["text"])
        assert bindings == {"user": 7, "slug": "hello world"}
        template = UriTemplate.parse("my_app://users/{user}/posts/{slug}")
        assert template.expand(bindings) == uri

    @pytest.mark.anyio()
    async def test_unparsable_variable(self, server: MCPServer) -> None:
        response = await server.handle(
            "resources/read", {"uri": "my_app://users/me/posts/x"}
        )

        assert response.error is not None
        assert response.error.code == ErrorCode.INVALID_PARAMS

    @pytest.mark.anyio()
    async def test_unmatched_uri(self, server: MCPServer) -> None:
        response = await server.handle("resources/read", {"uri": "/nothing/here"})

        assert response.error is not None
        assert response.error.code == ErrorCode.RESOURCE_NOT_FOUND

    @pytest.mark.anyio()
    async def test_long_unmatched_uri_does_not_stall_other_requests(
        self, calls: list[str]
    ) -> None:
        """Template matching runs on the event loop, so it must finish promptly."""
        # Arrange
        def record(message: str) -> str:
            calls.append(message)
            return message

        builder = ServerBuilder()
        builder.register_resource("files://{+dir}/{+name}.txt", post)
        builder.register_tool("record", record)
        server = builder.build()
        uri = "files://" + "a/" * 4000 + "x"
        responses = {}

        async def read() -> None:
            responses["read"] = await server.handle("resources/read", {"uri": uri})

        async def call() -> None:
            responses["call"] = await server.handle(
                "tools/call", {"name": "record", "arguments": {"message": "hi"}}
            )

        # Act
        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                tg.start_soon(read)
                tg.start_soon(call)

        # Assert
        assert responses["read"].error is not None
        assert responses["read"].error.code == ErrorCode.RESOURCE_NOT_FOUND
        assert responses["call"].error is None
        assert calls == ["hi"]

    @pytest.mark.anyio()
    async def test_override_replaces_listing(self) -> None:
        # Arrange
        builder = ServerBuilder()
        builder.register_resource("/a/b", literal)
        builder.override_resources_list(
            lambda: [{"uri": "/z", "name": "zed"}, Resource(uri="/y", name="why")]
        )
        server = builder.build()

        # Act
        response = await server.handle("resources/list")

        # Assert
        assert response.to_dict()["result"]["resources"] == [
            {"uri": "/z", "name": "zed"},
            {"uri": "/y", "name": "why"},
        ]


class TestTools:
    """tools/list and tools/call."""

    @pytest.mark.anyio()
    async def test_list_publishes_schema(self, server: MCPServer) -> None:
        response = await server.handle("tools/list")

        tools = {t["name"]: t for t in response.to_dict()["result"]["tools"]}
        assert sorted(tools) == ["explode", "failing", "record"]
        schema = tools["record"]["inputSchema"]
        assert schema["properties"]["message"]["type"] == "string"
        assert schema["required"] == ["message"]

    @pytest.mark.anyio()
    async def test_call_invokes_handler(
        self, server: MCPServer, calls: list[str]
    ) -> None:
        response = await server.handle(
            "tools/call", {"name": "record", "arguments": {"message": "hi"}}
        )

        assert response.to_dict() == {
            "result": {"content": [{"type": "text", "text": "hi"}], "isError": False}
        }
        assert calls == ["hi"]

    @pytest.mark.anyio()
    async def test_invalid_arguments_never_reach_handler(
        self, server: MCPServer, calls: list[str]
    ) -> None:
        # Act
        missing = await server.handle("tools/call", {"name": "record", "arguments": {}})
        surplus = await server.handle(
            "tools/call",
            {"name": "record", "arguments": {"message": "hi", "extra": True}},
        )

        # Assert
        for response in (missing, surplus):
            assert response.error is not None
            assert response.error.code == ErrorCode.INVALID_PARAMS
        assert calls == []

    @pytest.mark.anyio()
    async def test_unknown_tool(self, server: MCPServer) -> None:
        response = await server.handle("tools/call", {"name": "nope"})

        assert response.error is not None
        assert response.error.message == "Tool 'nope' not found"

    @pytest.mark.anyio()
    async def test_execution_error_is_a_result(self, server: MCPServer) -> None:
        response = await server.handle(
            "tools/call", {"name": "failing", "arguments": {"value": 11}}
        )

        assert response.error is None
        assert response.to_dict()["result"] == {
            "content": [{"type": "text", "text": "Value 11 is out of range"}],
            "isError": True,
        }

    @pytest.mark.anyio()
    async def test_internal_error_is_opaque(
        self, server: MCPServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        """The peer sees a generic message; the detail stays in the local log."""
        # Act
        with caplog.at_level(logging.ERROR, logger="mcp_daemon.dispatch"):
            response = await server.handle("tools/call", {"name": "explode"})

        # Assert
        assert response.error is not None
        assert response.error.code == ErrorCode.INTERNAL_ERROR
        assert response.error.message == "Internal error"
        assert "secret detail" not in json.dumps(response.to_dict())
        error_id = response.error.data["errorId"]
        [logged] = [r for r in caplog.records if r.exc_info is not None]
        assert error_id in logged.getMessage()
        assert str(logged.exc_info[1]) == "secret detail"


@pytest.mark.anyio()
async def test_sync_handlers_run_in_worker_threads() -> None:
    builder = ServerBuilder()
    builder.register_tool("thread", lambda: threading.get_ident())
    server = builder.build()

    response = await server.handle("tools/call", {"name": "thread"})

    assert response.to_dict()["result"]["content"][0]["text"] != str(
        threading.get_ident()
    )


@pytest.mark.anyio()
async def test_requests_are_served_concurrently() -> None:
    """Every handler waits for all the others, which only works if none blocks."""
    # Arrange
    count = 8
    arrived = 0
    everyone = anyio.Event()

    async def barrier(index: int) -> str:
        nonlocal arrived
        arrived += 1
        if arrived == count:
            everyone.set()
        await everyone.wait()
        return str(index)

    builder = ServerBuilder()
    builder.register_tool("barrier", barrier)
    server = builder.build()
    responses: dict[int, str] = {}

    async def call(index: int) -> None:
        response = await server.handle(
            "tools/call", {"name": "barrier", "arguments": {"index": index}}
        )
        responses[index] = response.to_dict()["result"]["content"][0]["text"]

    # Act
    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            for index in range(count):
                tg.start_soon(call, index)

    # Assert
    assert responses == {index: str(index) for index in range(count)}


@pytest.mark.anyio()
async def test_cancelled_request_produces_no_response() -> None:
    # Arrange
    started = anyio.Event()
    cleaned_up: list[bool] = []

    async def forever() -> str:
        started.set()
        try:
            await anyio.sleep_forever()
        finally:
            cleaned_up.append(True)
        return "unreachable"

    builder = ServerBuilder()
    builder.register_tool("forever", forever)
    server = builder.build()
    responses = []

    async def call() -> None:
        responses.append(await server.handle("tools/call", {"name": "forever"}))

    # Act
    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(call)
            await started.wait()
            tg.cancel_scope.cancel()

    # Assert
    assert responses == []
    assert cleaned_up == [True]


class TestOverrides:
    """Manual overrides for initialize and completion/complete."""

    @pytest.mark.anyio()
    async def test_server_info_and_instructions(self) -> None:
        builder = ServerBuilder()
        builder.override_server_info(lambda: Implementation(name="custom", version="9"))
        builder.override_instructions(lambda: "Overridden.")
        server = builder.build()

        result = (await server.handle("initialize")).to_dict()["result"]

        assert result["serverInfo"] == {"name": "custom", "version": "9"}
        assert result["instructions"] == "Overridden."
        assert result["capabilities"] == {}

    @pytest.mark.anyio()
    async def test_unusable_server_info_is_internal_error(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A bad override value fails the handshake with an opaque error."""
        # Arrange
        builder = ServerBuilder()
        builder.override_server_info(lambda: "not an implementation")
        server = builder.build()

        # Act
        with caplog.at_level(logging.ERROR, logger="mcp_daemon.dispatch"):
            response = await server.handle("initialize")

        # Assert
        assert response.error is not None
        assert response.error.code == ErrorCode.INTERNAL_ERROR
        assert "not an implementation" not in json.dumps(response.to_dict())
        assert any(r.exc_info is not None for r in caplog.records)

    @pytest.mark.anyio()
    async def test_completion_without_override_is_empty(self, server: MCPServer) -> None:
        response = await server.handle(
            "completion/complete",
            {
                "ref": {"type": "ref/prompt", "name": "greet"},
                "argument": {"name": "who", "value": "A"},
            },
        )

        assert response.to_dict() == {"result": {"completion": {"values": []}}}

    @pytest.mark.anyio()
    async def test_completion_override(self) -> None:
        # Arrange
        builder = ServerBuilder()
        names = ["Ada", "Alan", "Grace"]

        @builder.override_completion_complete
        def complete(params):
            prefix = params.argument.value
            return Completion(values=[n for n in names if n.startswith(prefix)])

        server = builder.build()

        # Act
        initialize = (await server.handle("initialize")).to_dict()["result"]
        response = await server.handle(
            "completion/complete",
            {
                "ref": {"type": "ref/prompt", "name": "greet"},
                "argument": {"name": "who", "value": "A"},
            },
        )

        # Assert
        assert "completions" in initialize["capabilities"]
        assert response.to_dict()["result"]["completion"]["values"] == ["Ada", "Alan"]
