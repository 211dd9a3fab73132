"""Tests for IDEServer: commands, WebSocket transport, bridge and lifecycle."""

from __future__ import annotations

import io
import json
import socket
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.testclient import TestClient

from termbridge.bridge.client import BridgeClient
from termbridge.core.approval import ApprovalOutcome
from termbridge.exceptions import ConfigError, TerminalOwnershipError
from termbridge.git.service import GitService
from termbridge.ide_server import AUTH_HEADER, IDEServer, LockFile


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def server(config, service, renderer, stdin_pipe, output):
    return IDEServer(
        config,
        service=service,
        renderer=renderer,
        input_fd=stdin_pipe.read_fd,
        output=output,
    )


class TestCommands:
    async def test_help(self, server, output):
        await server.handle_line("/help")
        assert "Available commands:" in output.getvalue()

    async def test_quit_requests_shutdown(self, server):
        await server.handle_line("/quit")
        await server.wait_stopped()
        assert server.exit_code == 0

    async def test_unknown_command(self, server, output):
        await server.handle_line("/frobnicate now")
        assert "Unknown command: /frobnicate" in output.getvalue()

    async def test_plain_text_is_ignored(self, server, output):
        await server.handle_line("hello there")
        assert output.getvalue() == ""

    async def test_status(self, server, output, repo):
        (repo / "scratch.txt").write_text("x\n")
        await server.handle_line("/status")
        text = output.getvalue()
        assert "Branch: main (tracking origin/main)" in text
        assert "scratch.txt" in text

    async def test_active_without_files(self, server, output):
        await server.handle_line("/active")
        assert "No active files" in output.getvalue()
        assert "Total: 0 file(s)" in output.getvalue()

    async def test_send_requires_path(self, server, output):
        await server.handle_line("/send")
        assert "Usage: /send <path>" in output.getvalue()

    async def test_send_without_agent(self, server, output):
        await server.handle_line("/send README.md")
        assert "No agent connected" in output.getvalue()

    async def test_review_commands_share_the_machine(self, server, output):
        busy = ApprovalOutcome(status="busy", message="⏳ Approval already in progress")
        with patch.object(server.approval, "run", AsyncMock(return_value=busy)) as run:
            await server.handle_line("/rp")
            await server.handle_line("/review-push")
        assert run.await_count == 2
        assert run.await_args.kwargs == {"trigger": "command", "branch": None}
        assert output.getvalue().count("Approval already in progress") == 2

    async def test_review_nothing_to_push(self, server, output):
        await server.handle_line("/rp")
        assert "No unpushed commits to review." in output.getvalue()

    async def test_lost_terminal_shuts_down_with_error(self, server):
        with (
            patch.object(
                server.approval,
                "run",
                AsyncMock(side_effect=TerminalOwnershipError("cannot restore")),
            ),
            pytest.raises(TerminalOwnershipError),
        ):
            await server.run_review(None)
        await server.wait_stopped()
        assert server.exit_code == 1


class TestWebSocket:
    def test_initialize_and_tool_call(self, server, output):
        client = TestClient(server.create_ws_app())
        with client.websocket_connect("/", headers={AUTH_HEADER: server.auth_token}) as ws:
            ws.send_text(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize"}))
            init = ws.receive_json()
            assert init["id"] == 1
            assert "review_push" in init["result"]["capabilities"]["tools"]

            ws.send_text(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))
            ws.send_text(
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": 2,
                        "method": "tools/call",
                        "params": {"name": "read_file", "arguments": {"path": "README.md"}},
                    }
                )
            )
            reply = ws.receive_json()
            assert reply["id"] == 2
            assert reply["result"]["content"][0]["text"] == "hello\n"

        text = output.getvalue()
        assert "Agent connected!" in text
        assert "Agent ready!" in text
        assert not server.link.connected

    def test_wrong_auth_token_is_still_accepted(self, server):
        client = TestClient(server.create_ws_app())
        with client.websocket_connect("/any/path", headers={AUTH_HEADER: "wrong"}) as ws:
            ws.send_text("{not json")
            assert ws.receive_json()["error"]["code"] == -32700

    def test_send_file_notifies_agent(self, server, output):
        client = TestClient(server.create_ws_app())
        with client.websocket_connect("/") as ws:
            ws.send_text(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
            ws.receive_json()
            ws.portal.call(server.send_file, "README.md")
            mention = ws.receive_json()
            changed = ws.receive_json()

        assert mention["method"] == "at_mentioned"
        assert mention["params"]["filePath"].endswith("README.md")
        assert changed["method"] == "notifications/resources/list_changed"
        assert "File sent to agent: README.md" in output.getvalue()
        assert [p.name for p in server.workspace.active_files] == ["README.md"]


class TestLockFile:
    def test_write_and_remove(self, tmp_path):
        lock = LockFile(tmp_path / "ide")
        path = lock.write(4242, {"pid": 1})
        assert path == tmp_path / "ide" / "4242.lock"
        assert json.loads(path.read_text()) == {"pid": 1}
        lock.remove()
        assert not path.exists()
        lock.remove()


class TestLifecycle:
    async def test_start_writes_lock_and_serves_bridge(self, server, config, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        ws_port = await server.start(interactive=False)
        try:
            lock_path = config.lock_dir / f"{ws_port}.lock"
            lock = json.loads(lock_path.read_text())
            assert lock["transport"] == "ws"
            assert lock["ideName"] == "termbridge"
            assert lock["workspaceFolders"] == [str(config.workspace)]
            assert lock["authToken"] == server.auth_token
            bridge_port = lock["bridgePort"]

            client = BridgeClient(f"http://127.0.0.1:{bridge_port}/mcp", timeout=10)
            text = await client.call_tool("git_status", {})
            assert "Unpushed commits: 1" in text
        finally:
            await server.stop()

        assert not lock_path.exists()

    async def test_bridge_reports_unbridged_tool_as_error(self, server):
        await server.start(interactive=False)
        try:
            port = server.bridge_server.port
            async with httpx.AsyncClient(trust_env=False) as http:
                response = await http.post(
                    f"http://127.0.0.1:{port}/mcp",
                    json={
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "tools/call",
                        "params": {"name": "read_file", "arguments": {"path": "README.md"}},
                    },
                )
            assert response.json()["error"]["message"] == "Unknown tool: read_file"
        finally:
            await server.stop()

    async def test_stop_closes_bridge_when_websocket_bind_fails(self, server):
        with (
            patch.object(
                server.ws_server, "bind", side_effect=OSError(98, "Address already in use")
            ),
            pytest.raises(OSError),
        ):
            await server.start(interactive=False)
        assert server.bridge_server.bound
        bridge_port = server.bridge_server.port

        await server.stop()

        assert not server.bridge_server.bound
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", bridge_port))

    async def test_start_outside_git_repo(self, config, renderer, stdin_pipe, tmp_path):
        outside = tmp_path / "plain"
        outside.mkdir()
        server = IDEServer(
            config,
            service=GitService(outside),
            renderer=renderer,
            input_fd=stdin_pipe.read_fd,
            output=io.StringIO(),
        )
        with pytest.raises(ConfigError, match="Not a git repository"):
            await server.start(interactive=False)
        await server.stop()
