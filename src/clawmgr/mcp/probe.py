"""MCPProbe: live initialize handshake against a configured server.

Remote servers get one JSON-RPC ``initialize`` POST; local servers are
spawned, sent the same request on stdin and judged by whether they are
still alive (or exited cleanly) after a grace period.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import subprocess
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Iterator
from contextlib import contextmanager

from clawmgr import __version__
from clawmgr.core.config import DEFAULT_HTTP_TIMEOUT, DEFAULT_PROBE_GRACE
from clawmgr.core.shell import child_env
from clawmgr.core.utils import truncate

from .models import ProbeResult, RemoteTransport, ServerDescriptor, StdioTransport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "clawmgr"
MAX_BODY_BYTES = 256 * 1024
KILL_TIMEOUT = 2.0
CANCEL_POLL = 0.1


def initialize_request() -> dict:
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        },
    }


def extract_server_name(payload: object) -> str | None:
    """Return ``result.serverInfo.name`` from a JSON-RPC response, if any."""
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    info = result.get("serverInfo")
    if not isinstance(info, dict):
        return None
    name = info.get("name")
    return name if isinstance(name, str) else None


def server_name_from_body(body: str) -> str | None:
    """Find the server name in a plain JSON body or in SSE ``data:`` frames."""
    try:
        name = extract_server_name(json.loads(body))
        if name:
            return name
    except json.JSONDecodeError:
        pass
    for line in body.splitlines():
        if not line.startswith("data:"):
            continue
        try:
            frame = json.loads(line[len("data:") :].strip())
        except json.JSONDecodeError:
            continue
        name = extract_server_name(frame)
        if name:
            return name
    return None


def probe(
    desc: ServerDescriptor,
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    grace: float = DEFAULT_PROBE_GRACE,
    cancel: threading.Event | None = None,
) -> ProbeResult:
    """Check that *desc* answers an MCP handshake. Blocks; run off the UI thread."""
    t = desc.transport
    logger.info("probing MCP server %s (%s): %s", desc.name, desc.kind, desc.endpoint)
    if isinstance(t, RemoteTransport):
        return probe_remote(t.url, timeout=timeout, cancel=cancel)
    return probe_local(t, grace=grace, cancel=cancel)


# ── Remote (HTTP / SSE) ─────────────────────────────────────────────


def _read_server_name(resp) -> str | None:
    """Scan a 2xx body for the server name.

    Stops at the first SSE ``data:`` frame that carries one, since a
    streaming server may keep the connection open after it. A read error
    or timeout keeps whatever arrived before it.
    """
    chunks: list[bytes] = []
    size = 0
    try:
        for raw in resp:
            chunks.append(raw)
            size += len(raw)
            if raw.startswith(b"data:"):
                name = server_name_from_body(raw.decode("utf-8", errors="replace"))
                if name:
                    return name
            if size >= MAX_BODY_BYTES:
                break
    except (OSError, ValueError) as e:
        logger.info("stopped reading response body: %s", e)
    return server_name_from_body(b"".join(chunks).decode("utf-8", errors="replace"))


def _post_initialize(url: str, timeout: float) -> ProbeResult:
    body = json.dumps(initialize_request()).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        method="POST",
        headers={
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "User-Agent": f"{CLIENT_NAME}/{__version__}",
        },
    )
    try:
        resp = urllib.request.urlopen(req, timeout=timeout)
    except urllib.error.HTTPError as e:
        detail = ""
        try:
            detail = e.read(MAX_BODY_BYTES).decode("utf-8", errors="replace")
        except OSError:
            pass
        return ProbeResult.unreachable(f"HTTP {e.code} {e.reason}", detail=truncate(detail))
    except urllib.error.URLError as e:
        return ProbeResult.unreachable(f"Connection failed: {e.reason}")
    except (OSError, ValueError) as e:
        return ProbeResult.unreachable(f"Connection failed: {e}")

    # the status alone decides reachability; the body only adds the name
    with resp:
        status = resp.status
        if not 200 <= status < 300:
            return ProbeResult.unreachable(f"HTTP {status}")
        name = _read_server_name(resp)
    return ProbeResult.ok(name, reason=f"HTTP {status}")


def probe_remote(
    url: str,
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    cancel: threading.Event | None = None,
) -> ProbeResult:
    if cancel is None:
        return _post_initialize(url, timeout)

    # the request runs on a worker so a cancel returns without waiting out the timeout
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(_post_initialize, url, timeout)
        while True:
            if cancel.is_set():
                future.cancel()
                return ProbeResult.unreachable("cancelled")
            try:
                return future.result(timeout=CANCEL_POLL)
            except concurrent.futures.TimeoutError:
                continue
    finally:
        pool.shutdown(wait=False)


# ── Local (stdio) ───────────────────────────────────────────────────


def _frame(message: dict) -> bytes:
    payload = json.dumps(message)
    return f"Content-Length: {len(payload)}\r\n\r\n{payload}\n".encode("utf-8")


def _spawn(transport: StdioTransport) -> subprocess.Popen:
    return subprocess.Popen(
        [transport.command, *transport.args],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=child_env(transport.env),
    )


@contextmanager
def _reaped(proc: subprocess.Popen) -> Iterator[subprocess.Popen]:
    """Guarantee *proc* is stopped, reaped and its pipes closed on exit."""
    try:
        yield proc
    finally:
        _stop(proc)


def _stop(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.terminate()
        try:
            proc.wait(timeout=KILL_TIMEOUT)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
    for stream in (proc.stdin, proc.stdout, proc.stderr):
        if stream is not None:
            try:
                stream.close()
            except OSError:
                pass


def _read_stderr(proc: subprocess.Popen) -> str:
    # only called after exit; a grandchild holding the pipe is bounded by the timeout
    try:
        _, err = proc.communicate(timeout=KILL_TIMEOUT)
    except (subprocess.TimeoutExpired, OSError, ValueError):
        return ""
    return (err or b"").decode("utf-8", errors="replace").strip()


def _wait(seconds: float, cancel: threading.Event | None) -> bool:
    """Sleep for *seconds*; True if cancelled first."""
    if cancel is None:
        time.sleep(seconds)
        return False
    return cancel.wait(seconds)


def probe_local(
    transport: StdioTransport,
    *,
    grace: float = DEFAULT_PROBE_GRACE,
    cancel: threading.Event | None = None,
) -> ProbeResult:
    cmdline = " ".join([transport.command, *transport.args])
    try:
        proc = _spawn(transport)
    except OSError as e:
        return ProbeResult.unreachable(f"Failed to start server: {e}", detail=f"Command: {cmdline}")

    with _reaped(proc):
        if proc.stdin is not None:
            try:
                proc.stdin.write(_frame(initialize_request()))
                proc.stdin.flush()
            except OSError:
                # the child may already have exited; its exit status tells the story
                pass

        if _wait(grace, cancel):
            return ProbeResult.unreachable("cancelled", detail=f"Command: {cmdline}")

        code = proc.poll()
        if code is None:
            return ProbeResult.ok(reason="still running after handshake", detail=f"Command: {cmdline}")

        stderr = truncate(_read_stderr(proc))
        if code == 0:
            return ProbeResult.ok(reason="exited cleanly", detail=stderr)
        return ProbeResult.unreachable(f"Server exited with code {code}", detail=stderr)

