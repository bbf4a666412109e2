"""Tests for the MCP probe: handshake payload, remote HTTP/SSE, local stdio."""

import json
import subprocess
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch

import pytest

from clawmgr.mcp import (
    RemoteTransport,
    ServerDescriptor,
    StdioTransport,
    initialize_request,
    probe,
    probe_local,
    probe_remote,
)
from clawmgr.mcp.probe import server_name_from_body

# ── payload ─────────────────────────────────────────────────────────


class TestPayload:
    def test_initialize_request(self):
        req = initialize_request()
        assert req["jsonrpc"] == "2.0"
        assert req["method"] == "initialize"
        assert req["params"]["capabilities"] == {}
        assert req["params"]["protocolVersion"] == "2024-11-05"
        assert set(req["params"]["clientInfo"]) == {"name", "version"}

    def test_name_from_json_body(self):
        assert server_name_from_body('{"result":{"serverInfo":{"name":"x"}}}') == "x"

    def test_name_from_sse_frames(self):
        body = (
            "event: message\n"
            "data: not json\n"
            'data: {"jsonrpc":"2.0","id":1,"result":{"serverInfo":{"name":"sse-srv"}}}\n'
        )
        assert server_name_from_body(body) == "sse-srv"

    def test_no_name(self):
        assert server_name_from_body('{"result":{}}') is None
        assert server_name_from_body("") is None


# ── remote ──────────────────────────────────────────────────────────


class _Handler(BaseHTTPRequestHandler):
    routes: dict = {}
    seen: list = []

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        self.seen.append(
            {
                "path": self.path,
                "accept": self.headers.get("Accept", ""),
                "content_type": self.headers.get("Content-Type", ""),
                "body": json.loads(self.rfile.read(length)),
            }
        )
        status, content_type, body = self.routes.get(self.path, (404, "text/plain", "missing"))
        if self.path.startswith("/stream-open"):
            # no Content-Length: the frame is sent, then the stream is held open
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.end_headers()
            self.wfile.write(body.encode())
            self.wfile.flush()
            time.sleep(3)
            return
        if self.path == "/slow":
            time.sleep(2)
        payload = body.encode()
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args):
        pass


@pytest.fixture
def http_server():
    _Handler.seen = []
    _Handler.routes = {
        "/json": (200, "application/json", '{"result":{"serverInfo":{"name":"x"}}}'),
        "/sse": (
            200,
            "text/event-stream",
            'event: message\ndata: {"result":{"serverInfo":{"name":"streamer"}}}\n\n',
        ),
        "/stream-open": (
            200,
            "text/event-stream",
            'data: {"result":{"serverInfo":{"name":"x"}}}\n\n',
        ),
        "/stream-open-anon": (200, "text/event-stream", ": keepalive\n"),
        "/anon": (200, "application/json", "{}"),
        "/error": (500, "text/plain", "boom"),
        "/slow": (200, "application/json", "{}"),
    }
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


class TestProbeRemote:
    def test_200_with_server_name(self, http_server):
        result = probe_remote(http_server + "/json")
        assert result.reachable
        assert result.server_name == "x"

    def test_request_shape(self, http_server):
        probe_remote(http_server + "/json")
        seen = _Handler.seen[0]
        assert "application/json" in seen["accept"]
        assert "text/event-stream" in seen["accept"]
        assert seen["content_type"] == "application/json"
        assert seen["body"]["method"] == "initialize"

    def test_sse_response(self, http_server):
        result = probe_remote(http_server + "/sse")
        assert result.reachable
        assert result.server_name == "streamer"

    def test_open_stream_after_named_frame(self, http_server):
        t0 = time.monotonic()
        result = probe_remote(http_server + "/stream-open", timeout=1)
        assert result.reachable
        assert result.server_name == "x"
        assert result.reason == "HTTP 200"
        assert time.monotonic() - t0 < 1.5

    def test_open_stream_without_name_times_out_reachable(self, http_server):
        result = probe_remote(http_server + "/stream-open-anon", timeout=1)
        assert result.reachable
        assert result.server_name is None

    def test_2xx_without_name_is_reachable(self, http_server):
        result = probe_remote(http_server + "/anon")
        assert result.reachable
        assert result.server_name is None

    def test_500_unreachable(self, http_server):
        result = probe_remote(http_server + "/error")
        assert not result.reachable
        assert "500" in result.reason
        assert result.detail == "boom"

    def test_connection_refused(self):
        result = probe_remote("http://127.0.0.1:9/mcp", timeout=2)
        assert not result.reachable
        assert result.reason

    def test_cancel_returns_promptly(self, http_server):
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()
        t0 = time.monotonic()
        result = probe_remote(http_server + "/slow", cancel=cancel)
        assert not result.reachable
        assert result.reason == "cancelled"
        assert time.monotonic() - t0 < 1.5

    def test_dispatch_from_descriptor(self, http_server):
        desc = ServerDescriptor("remote", RemoteTransport(http_server + "/json"))
        assert probe(desc).server_name == "x"


# ── local ───────────────────────────────────────────────────────────


def _python(code, env=None):
    return StdioTransport(command=sys.executable, args=["-c", code], env=env or {})


@pytest.fixture
def spawned():
    """Record every process the probe starts."""
    procs: list[subprocess.Popen] = []
    real_popen = subprocess.Popen

    def _capture(*args, **kwargs):
        proc = real_popen(*args, **kwargs)
        procs.append(proc)
        return proc

    with patch("clawmgr.mcp.probe.subprocess.Popen", side_effect=_capture):
        yield procs


class TestProbeLocal:
    def test_clean_exit_is_reachable(self, spawned):
        result = probe_local(_python("import sys; sys.exit(0)"), grace=2.0)
        assert result.reachable
        assert "exited cleanly" in result.reason

    def test_nonzero_exit_carries_stderr(self, spawned):
        code = "import sys; sys.stderr.write('missing API key'); sys.exit(3)"
        result = probe_local(_python(code), grace=2.0)
        assert not result.reachable
        assert "3" in result.reason
        assert "missing API key" in result.detail

    def test_still_running_is_reachable_and_killed(self, spawned):
        result = probe_local(_python("import time; time.sleep(60)"), grace=0.5)
        assert result.reachable
        assert "still running" in result.reason
        assert len(spawned) == 1
        assert spawned[0].poll() is not None

    def test_receives_framed_initialize(self, spawned, tmp_path):
        out = tmp_path / "stdin.txt"
        code = (
            "import sys\n"
            "data = sys.stdin.buffer.readline() + sys.stdin.buffer.readline()"
            " + sys.stdin.buffer.readline()\n"
            f"open({str(out)!r}, 'wb').write(data)\n"
        )
        result = probe_local(_python(code), grace=2.0)
        assert result.reachable
        data = out.read_bytes().decode()
        header, _, body = data.partition("\r\n\r\n")
        assert header.startswith("Content-Length: ")
        assert json.loads(body)["method"] == "initialize"
        assert int(header.split(": ")[1]) == len(body.strip())

    def test_env_passed_to_child(self, spawned):
        code = "import os, sys; sys.exit(0 if os.environ.get('MCP_TOKEN') == 'abc' else 5)"
        assert probe_local(_python(code, env={"MCP_TOKEN": "abc"}), grace=2.0).reachable

    def test_spawn_failure(self):
        result = probe_local(StdioTransport(command="definitely-not-a-real-binary-xyz"), grace=0.1)
        assert not result.reachable
        assert "Failed to start" in result.reason

    def test_cancel_kills_child(self, spawned):
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()
        t0 = time.monotonic()
        result = probe_local(_python("import time; time.sleep(60)"), grace=10.0, cancel=cancel)
        assert result.reason == "cancelled"
        assert time.monotonic() - t0 < 5
        assert spawned[0].poll() is not None

    def test_dispatch_from_descriptor(self, spawned):
        desc = ServerDescriptor("local", _python("pass"))
        assert probe(desc, grace=2.0).reachable
