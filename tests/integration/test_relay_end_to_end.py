"""End-to-end tests against a relay listening on a real socket."""
import asyncio

import pytest

from roomrelay.signaling.client import EventRecorder, RelayClient
from roomrelay.signaling.server import RelayServer

pytestmark = pytest.mark.integration


async def start_relay(relay_config):
    relay = RelayServer(host="127.0.0.1", port=0, config=relay_config)
    await relay.start()
    return relay


async def open_client(relay):
    client = RelayClient(f"ws://127.0.0.1:{relay.port}/ws")
    recorder = EventRecorder(client)
    await client.connect()
    return client, recorder


async def http_get(port, path):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    data = await asyncio.wait_for(reader.read(), timeout=5.0)
    writer.close()
    return data.decode()


@pytest.mark.asyncio
async def test_mesh_call_setup(relay_config):
    """Test join, offer/answer relay, chat and departure over the wire."""
    relay = await start_relay(relay_config)
    try:
        alice, alice_events = await open_client(relay)
        bob, bob_events = await open_client(relay)

        await alice.join_room("r1", "alice")
        assert await alice_events.next() == ("existing-peers", [[]])

        await bob.join_room("r1", "bob")
        assert await bob_events.next() == ("existing-peers", [[alice.connection_id]])
        assert await alice_events.next() == (
            "peer-joined", [{"peerId": bob.connection_id, "userName": "bob"}]
        )

        # The newcomer offers to everyone already present
        offer = {"type": "offer", "sdp": "v=0\r\ns=-\r\n"}
        await bob.send_signal(alice.connection_id, "offer", offer)
        assert await alice_events.next() == (
            "signal", [bob.connection_id, {"type": "offer", "payload": offer}]
        )

        answer = {"type": "answer", "sdp": "v=0\r\ns=-\r\n"}
        await alice.send_signal(bob.connection_id, "answer", answer)
        assert await bob_events.next() == (
            "signal", [alice.connection_id, {"type": "answer", "payload": answer}]
        )

        await alice.send_chat("hi")
        for events in (alice_events, bob_events):
            name, [chat] = await events.next()
            assert name == "room-chat"
            assert chat["from"] == alice.connection_id
            assert chat["name"] == "alice"
            assert chat["text"] == "hi"
            assert isinstance(chat["ts"], int)

        await bob.disconnect()
        assert await alice_events.next() == ("peer-left", [bob.connection_id])
        assert relay.registry.members_of("r1") == [alice.connection_id]

        await alice.disconnect()
    finally:
        await relay.stop()


@pytest.mark.asyncio
async def test_leave_room_over_the_wire(relay_config):
    """Test explicit leave-room keeps the connection open."""
    relay = await start_relay(relay_config)
    try:
        alice, alice_events = await open_client(relay)
        bob, bob_events = await open_client(relay)

        await alice.join_room("r1", "alice")
        await bob.join_room("r1", "bob")
        await alice_events.next()
        await alice_events.next()
        await bob_events.next()

        await bob.leave_room()
        assert await alice_events.next() == ("peer-left", [bob.connection_id])
        assert bob.is_connected

        await bob.join_room("r1", "bob")
        assert await bob_events.next() == ("existing-peers", [[alice.connection_id]])

        await alice.disconnect()
        await bob.disconnect()
    finally:
        await relay.stop()


@pytest.mark.asyncio
async def test_http_endpoints(relay_config):
    """Test the health check and static bundle on the relay port."""
    relay = await start_relay(relay_config)
    try:
        health = await http_get(relay.port, "/ping")
        assert health.startswith("HTTP/1.1 200")
        assert health.endswith("pong")

        index = await http_get(relay.port, "/")
        assert index.startswith("HTTP/1.1 200")
        assert "<html>relay</html>" in index

        missing = await http_get(relay.port, "/missing.js")
        assert missing.startswith("HTTP/1.1 404")
    finally:
        await relay.stop()


@pytest.mark.asyncio
async def test_stop_closes_clients(relay_config):
    """Test that stopping the relay disconnects everyone."""
    relay = await start_relay(relay_config)
    alice, _ = await open_client(relay)
    await alice.join_room("r1", "alice")

    await relay.stop()
    await asyncio.wait_for(alice._receive_task, timeout=5.0)

    assert not alice.is_connected
    assert relay.connections == {}
    assert relay.registry.rooms() == {}
