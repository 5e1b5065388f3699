"""Pytest configuration and shared fixtures."""
import asyncio
import json

import pytest

from roomrelay.signaling.registry import SessionRegistry
from roomrelay.signaling.server import RelayServer
from roomrelay.utils.config import HttpSection, RelayConfig, RelaySection

FIXED_TS = 1700000000000


class FakeWebSocket:
    """In-memory stand-in for a server-side WebSocket connection."""

    def __init__(self, incoming=None, fail_after=None):
        self.incoming = list(incoming or [])
        self.sent = []
        self.closed = False
        self.fail_after = fail_after

    async def send(self, frame):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("broken pipe")
        self.sent.append(frame)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.incoming:
            yield frame
            await asyncio.sleep(0)

    def events(self, name=None):
        """Decoded (event, args) pairs sent to this client, welcome excluded."""
        decoded = [json.loads(frame) for frame in self.sent]
        pairs = [(d["event"], d["args"]) for d in decoded if d["event"] != "welcome"]
        if name is not None:
            pairs = [p for p in pairs if p[0] == name]
        return pairs


class StalledWebSocket(FakeWebSocket):
    """WebSocket whose sends never complete."""

    async def send(self, frame):
        await asyncio.Event().wait()


def frame(event, *args):
    """Encode a client frame."""
    return json.dumps({"event": event, "args": list(args)})


async def settle(relay):
    """Wait until every live connection has flushed its outbound queue."""
    for connection in list(relay.connections.values()):
        await connection.drain(timeout=1.0)


async def wait_until(predicate, timeout=1.0):
    """Poll the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def registry():
    """Empty session registry."""
    return SessionRegistry()


@pytest.fixture
def relay_config(tmp_path):
    """Relay config serving static files from a temp directory."""
    static_dir = tmp_path / "public"
    static_dir.mkdir()
    (static_dir / "index.html").write_text("<html>relay</html>")
    return RelayConfig(http=HttpSection(static_dir=static_dir))


@pytest.fixture
def relay(relay_config):
    """Relay server with a fixed clock, not listening on any socket."""
    return RelayServer(config=relay_config, clock=lambda: FIXED_TS)


@pytest.fixture
def tiny_queue_relay(tmp_path):
    """Relay whose per-connection outbound queue holds two frames."""
    config = RelayConfig(
        relay=RelaySection(outbound_queue_size=2),
        http=HttpSection(static_dir=tmp_path),
    )
    return RelayServer(config=config, clock=lambda: FIXED_TS)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
