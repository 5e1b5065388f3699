"""WebRTC room signaling relay."""

import asyncio
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from roomrelay.signaling import protocol
from roomrelay.signaling.http import HttpResponder
from roomrelay.signaling.protocol import ChatMessage, Event, EventName, ProtocolError
from roomrelay.signaling.registry import SessionRegistry
from roomrelay.utils.config import RelayConfig
from roomrelay.utils.logger import get_logger

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionState(str, Enum):
    """Lifecycle of one client link."""
    CONNECTED = "connected"
    IN_ROOM = "in_room"
    TERMINATED = "terminated"


class Connection:
    """One live client link with a private outbound queue.

    Frames are queued with ``deliver`` and written by a dedicated writer
    task, so a slow client never stalls the sender. A full queue or a failed
    write marks the connection broken and hands it to ``on_broken``.
    """

    def __init__(self, websocket: Any, queue_size: int = 256, connection_id: Optional[str] = None):
        """Initialize connection.

        Args:
            websocket: Transport with async ``send`` and ``close``
            queue_size: Maximum number of pending outbound frames
            connection_id: Identifier to use instead of a generated one
        """
        self.connection_id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.CONNECTED

        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.on_broken: Optional[Callable[["Connection"], None]] = None

        self._broken = False
        self._writer: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.TERMINATED and not self._broken

    def start(self) -> None:
        """Start the writer task. Requires a running event loop."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def deliver(self, frame: str) -> bool:
        """Queue a frame without blocking.

        Returns:
            True if queued, False if the frame was dropped
        """
        if not self.is_open:
            return False

        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for {self.connection_id}, dropping connection")
            self._mark_broken()
            return False

        return True

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued frame has been written."""
        await asyncio.wait_for(self.outbox.join(), timeout=timeout)

    async def close(self) -> None:
        """Stop the writer and close the transport."""
        self.state = ConnectionState.TERMINATED

        if self._writer is not None and self._writer is not asyncio.current_task():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass

        # Discard frames nobody will write
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()

        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"Error closing transport for {self.connection_id}: {e}")

    async def _write_loop(self) -> None:
        while True:
            frame = await self.outbox.get()
            try:
                await self.websocket.send(frame)
            except ConnectionClosed:
                logger.info(f"Connection {self.connection_id} closed while sending")
                self._mark_broken()
                return
            except Exception as e:
                logger.error(f"Error sending to {self.connection_id}: {e}")
                self._mark_broken()
                return
            finally:
                self.outbox.task_done()

    def _mark_broken(self) -> None:
        if self._broken:
            return
        self._broken = True
        if self.on_broken is not None:
            self.on_broken(self)


class RelayServer:
    """Room signaling relay.

    Clients join a room, learn who is already there, and then exchange
    negotiation messages addressed by connection id. The relay never looks
    inside those messages.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 3000,
        config: Optional[RelayConfig] = None,
        registry: Optional[SessionRegistry] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize relay server.

        Args:
            host: Server host
            port: Server port (0 picks a free port on start)
            config: Relay configuration
            registry: Session registry to use instead of a fresh one
            clock: Millisecond clock used to stamp chat messages
        """
        self.host = host
        self.port = port
        self.config = config or RelayConfig()
        self.registry = registry or SessionRegistry(
            default_display_name=self.config.relay.default_display_name
        )
        self.clock = clock or _now_ms
        self.http = HttpResponder(self.config.http)

        self.connections: Dict[str, Connection] = {}
        self._server = None
        self._teardowns: Set[asyncio.Task] = set()

        self._handlers = {
            (EventName.JOIN_ROOM, ConnectionState.CONNECTED): self._on_join_room,
            (EventName.JOIN_ROOM, ConnectionState.IN_ROOM): self._on_rejoin,
            (EventName.SIGNAL, ConnectionState.IN_ROOM): self._on_signal,
            (EventName.ROOM_CHAT, ConnectionState.IN_ROOM): self._on_room_chat,
            (EventName.LEAVE_ROOM, ConnectionState.IN_ROOM): self._on_leave_room,
        }

        logger.info(f"Relay server initialized on {host}:{port}")

    async def start(self) -> None:
        """Start listening."""
        transport = self.config.transport
        self._server = await websockets.serve(
            self.handle_client,
            self.host,
            self.port,
            process_request=self.http.process_request,
            max_size=self.config.relay.max_message_bytes,
            ping_interval=transport.ping_interval,
            ping_timeout=transport.ping_timeout,
            close_timeout=transport.close_timeout,
        )
        sockets = list(self._server.sockets)
        if sockets:
            self.port = sockets[0].getsockname()[1]

        logger.info(f"Relay listening on ws://{self.host}:{self.port}{self.config.http.websocket_path}")

    async def stop(self) -> None:
        """Close every connection, stop listening and finish pending teardowns."""
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Relay stopped")

        if self._teardowns:
            await asyncio.gather(*self._teardowns)

    async def run(self) -> None:
        """Start the relay and serve until cancelled."""
        await self.start()
        try:
            await asyncio.Future()  # Run forever
        finally:
            await self.stop()

    async def handle_client(self, websocket: Any) -> None:
        """Handle one client connection for its whole lifetime.

        Args:
            websocket: WebSocket connection
        """
        connection = self.open_connection(websocket)

        try:
            async for message in websocket:
                self.dispatch(connection, message)
        except ConnectionClosed:
            logger.info(f"Connection closed for {connection.connection_id}")
        except Exception as e:
            logger.error(f"Error handling client {connection.connection_id}: {e}")
        finally:
            await self.disconnect(connection)

    def open_connection(self, websocket: Any) -> Connection:
        """Register a new transport and greet it with its id."""
        connection = Connection(websocket, queue_size=self.config.relay.outbound_queue_size)
        connection.on_broken = self._schedule_disconnect
        self.connections[connection.connection_id] = connection
        connection.start()

        self._send(connection, protocol.welcome(connection.connection_id))

        logger.info(f"Connection opened: {connection.connection_id} (total connections: {len(self.connections)})")
        return connection

    def dispatch(self, connection: Connection, message: Any) -> None:
        """Route one inbound frame.

        Malformed frames and events that make no sense in the connection's
        current state are dropped; the connection stays usable.
        """
        if connection.state is ConnectionState.TERMINATED:
            return

        try:
            event = Event.from_json(message)
        except ProtocolError as e:
            logger.debug(f"Dropping frame from {connection.connection_id}: {e}")
            return

        handler = self._handlers.get((event.name, connection.state))
        if handler is None:
            logger.debug(
                f"Ignoring {event.name.value} from {connection.connection_id} "
                f"in state {connection.state.value}"
            )
            return

        try:
            handler(connection, event.args)
        except ProtocolError as e:
            logger.debug(f"Dropping {event.name.value} from {connection.connection_id}: {e}")

    async def disconnect(self, connection: Connection) -> None:
        """Tear down a connection and notify its room. Safe to call twice."""
        if connection.state is ConnectionState.TERMINATED:
            return
        connection.state = ConnectionState.TERMINATED

        connection_id = connection.connection_id
        self.connections.pop(connection_id, None)

        room_id = self.registry.forget(connection_id)
        if room_id is not None:
            self._broadcast(self.registry.members_of(room_id), protocol.peer_left(connection_id))
            logger.info(f"{connection_id} left {room_id} on disconnect")

        logger.info(f"Connection closed: {connection_id} (remaining connections: {len(self.connections)})")
        await connection.close()

    def _schedule_disconnect(self, connection: Connection) -> None:
        """Tear down a broken connection from outside its handler task."""
        task = asyncio.get_running_loop().create_task(self.disconnect(connection))
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)

    def _on_join_room(self, connection: Connection, args: List[Any]) -> None:
        room_id, display_name = protocol.parse_join_room(args)
        self._join(connection, room_id, display_name)

    def _on_rejoin(self, connection: Connection, args: List[Any]) -> None:
        # Validate before leaving so a malformed re-join keeps the current room.
        room_id, display_name = protocol.parse_join_room(args)
        self._leave(connection)
        self._join(connection, room_id, display_name)

    def _on_signal(self, connection: Connection, args: List[Any]) -> None:
        envelope = protocol.parse_signal(args)
        envelope.sender = connection.connection_id

        target = self.connections.get(envelope.target)
        if target is None or target.state is not ConnectionState.IN_ROOM:
            logger.debug(f"Dropping {envelope.kind} from {envelope.sender}: {envelope.target} not reachable")
            return

        self._send(target, protocol.relayed_signal(envelope))
        logger.debug(f"Forwarded {envelope.kind} from {envelope.sender} to {envelope.target}")

    def _on_room_chat(self, connection: Connection, args: List[Any]) -> None:
        text = protocol.parse_room_chat(args)
        connection_id = connection.connection_id

        room_id = self.registry.room_of(connection_id)
        if room_id is None:
            return

        chat = ChatMessage(
            sender=connection_id,
            name=self.registry.display_name_of(connection_id),
            text=text,
            ts=self.clock(),
        )
        self._broadcast(self.registry.members_of(room_id), protocol.room_chat(chat))

    def _on_leave_room(self, connection: Connection, args: List[Any]) -> None:
        self._leave(connection)

    def _join(self, connection: Connection, room_id: str, display_name: Optional[str]) -> None:
        connection_id = connection.connection_id

        peers = self.registry.join(connection_id, room_id, display_name)
        connection.state = ConnectionState.IN_ROOM
        user_name = self.registry.display_name_of(connection_id)

        self._send(connection, protocol.existing_peers(peers))
        self._broadcast(peers, protocol.peer_joined(connection_id, user_name))

        logger.info(f"{connection_id} joined {room_id} as {user_name} ({len(peers)} peers)")

    def _leave(self, connection: Connection) -> None:
        connection_id = connection.connection_id

        room_id = self.registry.leave(connection_id)
        connection.state = ConnectionState.CONNECTED
        if room_id is None:
            return

        self._broadcast(self.registry.members_of(room_id), protocol.peer_left(connection_id))
        logger.info(f"{connection_id} left {room_id}")

    def _send(self, connection: Connection, event: Event) -> None:
        connection.deliver(event.to_json())

    def _broadcast(self, connection_ids: Iterable[str], event: Event) -> None:
        frame = event.to_json()
        for connection_id in connection_ids:
            connection = self.connections.get(connection_id)
            if connection is not None:
                connection.deliver(frame)


async def main():
    """Run the relay server."""
    import argparse

    from roomrelay.utils.config import load_config, settings
    from roomrelay.utils.logger import setup_logging

    parser = argparse.ArgumentParser(description="WebRTC Room Signaling Relay")
    parser.add_argument("--host", default=settings.host, help="Server host")
    parser.add_argument("--port", type=int, default=settings.port, help="Server port")
    parser.add_argument("--config", default=None, help="Path to relay config YAML")

    args = parser.parse_args()

    setup_logging(log_level=settings.log_level, log_file=settings.log_file)
    server = RelayServer(host=args.host, port=args.port, config=load_config(args.config))
    await server.run()


if __name__ == "__main__":
    asyncio.run(main())
