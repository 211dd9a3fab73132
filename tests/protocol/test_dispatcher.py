"""Tests for MessageDispatcher routing."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from termbridge.bridge.models import PARSE_ERROR_CODE, TOOL_ERROR_CODE
from termbridge.protocol.dispatcher import PROTOCOL_VERSION, MessageDispatcher
from termbridge.protocol.tools import ToolRegistry, ToolSpec
from termbridge.protocol.workspace import Workspace


async def _greet(args):
    return f"hello {args.get('name', 'world')}"


async def _fail(args):
    raise ValueError("Missing required argument: path")


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "notes.txt").write_text("notes\n")
    return Workspace(tmp_path)


@pytest.fixture
def initialized():
    return MagicMock()


@pytest.fixture
def dispatcher(workspace, initialized):
    registry = ToolRegistry()
    registry.register(ToolSpec(name="greet", description="Say hello", handler=_greet))
    registry.register(ToolSpec(name="fail", description="Always fails", handler=_fail))
    return MessageDispatcher(
        registry, workspace, server_name="test-ide", on_initialized=initialized
    )


def _request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestLifecycle:
    async def test_initialize(self, dispatcher):
        response = await dispatcher.dispatch(_request("initialize", {}))
        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert result["serverInfo"]["name"] == "test-ide"
        assert set(result["capabilities"]["tools"]) == {"greet", "fail"}
        assert result["capabilities"]["resources"] == {"listChanged": True}

    async def test_initialized_notification(self, dispatcher, initialized):
        message = {"jsonrpc": "2.0", "method": "notifications/initialized"}
        assert await dispatcher.dispatch(message) is None
        initialized.assert_called_once()

    async def test_other_notifications_are_silent(self, dispatcher, initialized):
        message = {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {}}
        assert await dispatcher.dispatch(message) is None
        initialized.assert_not_called()

    async def test_responses_are_ignored(self, dispatcher):
        assert await dispatcher.dispatch({"jsonrpc": "2.0", "id": 4, "result": {}}) is None

    async def test_unknown_method_is_not_an_error(self, dispatcher):
        response = await dispatcher.dispatch(_request("prompts/list", request_id=9))
        assert response == {
            "jsonrpc": "2.0",
            "id": 9,
            "result": {"status": "ok", "message": "Not implemented yet"},
        }


class TestTools:
    async def test_tools_list(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/list"))
        tools = response["result"]["tools"]
        assert [t["name"] for t in tools] == ["greet", "fail"]
        assert tools[0]["description"] == "Say hello"

    async def test_tools_call(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("tools/call", {"name": "greet", "arguments": {"name": "agent"}})
        )
        assert response["result"] == {"content": [{"type": "text", "text": "hello agent"}]}

    async def test_legacy_tool_method(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/greet", {"name": "legacy"}))
        assert response["result"]["content"][0]["text"] == "hello legacy"

    async def test_tool_failure(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", {"name": "fail"}))
        assert response["error"] == {
            "code": TOOL_ERROR_CODE,
            "message": "Missing required argument: path",
        }

    async def test_unknown_tool(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", {"name": "nope"}))
        assert response["error"]["message"] == "Unknown tool: nope"


class TestResources:
    async def test_list_starts_empty(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/list"))
        assert response["result"] == {"resources": []}

    async def test_list_and_read_active_file(self, dispatcher, workspace, tmp_path):
        workspace.activate("notes.txt")
        listed = await dispatcher.dispatch(_request("resources/list"))
        uri = listed["result"]["resources"][0]["uri"]

        response = await dispatcher.dispatch(_request("resources/read", {"uri": uri}))

        assert response["result"]["contents"][0]["text"] == "notes\n"

    async def test_read_outside_workspace_is_an_error(self, dispatcher, tmp_path):
        response = await dispatcher.dispatch(
            _request("resources/read", {"uri": "file:///etc/passwd"})
        )
        assert response["error"]["code"] == TOOL_ERROR_CODE

    async def test_other_resource_methods(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/templates/list"))
        assert response["result"] == {"resources": []}


class TestRaw:
    async def test_invalid_json(self, dispatcher):
        response = await dispatcher.dispatch_raw("{broken")
        assert response["error"]["code"] == PARSE_ERROR_CODE
        assert response["id"] is None

    async def test_non_object(self, dispatcher):
        response = await dispatcher.dispatch_raw("[1, 2]")
        assert response["error"]["code"] == PARSE_ERROR_CODE

    async def test_valid_raw(self, dispatcher):
        response = await dispatcher.dispatch_raw(json.dumps(_request("tools/list")))
        assert "tools" in response["result"]
