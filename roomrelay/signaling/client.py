"""Relay signaling client."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from roomrelay.signaling.protocol import SIGNAL_KINDS, Event, EventName, ProtocolError
from roomrelay.utils.logger import get_logger

logger = get_logger(__name__)

Callback = Callable[..., Awaitable[None]]


class RelayClient:
    """Client side of the relay protocol.

    Inbound events are dispatched to the ``on_*`` coroutine callbacks. Each
    callback receives the event arguments in wire order.
    """

    def __init__(self, relay_url: str):
        """Initialize relay client.

        Args:
            relay_url: Relay WebSocket URL (e.g., ws://localhost:3000/ws)
        """
        self.relay_url = relay_url
        self.websocket: Optional[Any] = None
        self.connection_id: Optional[str] = None
        self.is_connected = False

        self._receive_task: Optional[asyncio.Task] = None

        # Callbacks
        self.on_existing_peers: Optional[Callback] = None
        self.on_peer_joined: Optional[Callback] = None
        self.on_peer_left: Optional[Callback] = None
        self.on_signal: Optional[Callback] = None
        self.on_room_chat: Optional[Callback] = None

    async def connect(self, timeout: float = 5.0) -> str:
        """Connect and wait for the relay to assign an id.

        Returns:
            The connection id assigned by the relay
        """
        logger.info(f"Connecting to relay: {self.relay_url}")
        self.websocket = await websockets.connect(self.relay_url)

        frame = await asyncio.wait_for(self.websocket.recv(), timeout=timeout)
        event = Event.from_json(frame)
        if event.name is not EventName.WELCOME or not event.args:
            await self.websocket.close()
            raise ProtocolError(f"Expected welcome, got {event.name.value}")

        self.connection_id = event.args[0]
        self.is_connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())

        logger.info(f"Connected to relay as {self.connection_id}")
        return self.connection_id

    async def disconnect(self) -> None:
        """Disconnect from the relay."""
        if self.websocket:
            await self.websocket.close()
            self.is_connected = False
            logger.info("Disconnected from relay")
        if self._receive_task:
            await self._receive_task

    async def join_room(self, room_id: str, display_name: str = "") -> None:
        await self.send(Event(EventName.JOIN_ROOM, [room_id, display_name]))
        logger.info(f"Joining room {room_id}")

    async def leave_room(self) -> None:
        await self.send(Event(EventName.LEAVE_ROOM))

    async def send_signal(self, target_id: str, kind: str, payload: Any) -> None:
        """Send a negotiation message to one peer.

        Args:
            target_id: Target connection id
            kind: One of "offer", "answer", "ice"
            payload: Session description or candidate, passed through as is
        """
        if kind not in SIGNAL_KINDS:
            raise ValueError(f"Unknown signal kind: {kind}")
        await self.send(Event(EventName.SIGNAL, [target_id, {"type": kind, "payload": payload}]))
        logger.debug(f"Sent {kind} to {target_id}")

    async def send_chat(self, text: str) -> None:
        await self.send(Event(EventName.ROOM_CHAT, [text]))

    async def send(self, event: Event) -> None:
        """Send an event to the relay.

        Args:
            event: Event to send
        """
        if not self.websocket or not self.is_connected:
            logger.error("Not connected to relay")
            return

        try:
            await self.websocket.send(event.to_json())
        except ConnectionClosed as e:
            logger.error(f"Failed to send {event.name.value}: {e}")
            self.is_connected = False

    async def _receive_loop(self) -> None:
        """Receive events from the relay."""
        try:
            async for frame in self.websocket:
                try:
                    await self._handle_event(Event.from_json(frame))
                except ProtocolError as e:
                    logger.error(f"Failed to decode event: {e}")
                except Exception as e:
                    logger.error(f"Error handling event: {e}")
        except ConnectionClosed as e:
            logger.info(f"Relay connection closed: {e}")
        finally:
            self.is_connected = False
            logger.info("Relay connection closed")

    async def _handle_event(self, event: Event) -> None:
        callbacks = {
            EventName.EXISTING_PEERS: self.on_existing_peers,
            EventName.PEER_JOINED: self.on_peer_joined,
            EventName.PEER_LEFT: self.on_peer_left,
            EventName.SIGNAL: self.on_signal,
            EventName.ROOM_CHAT: self.on_room_chat,
        }
        callback = callbacks.get(event.name)
        if callback is None:
            logger.debug(f"Unhandled event: {event.name.value}")
            return
        await callback(*event.args)


class EventRecorder:
    """Collect relay events into a queue, for scripts and tests."""

    def __init__(self, client: RelayClient):
        self.events: asyncio.Queue = asyncio.Queue()
        for name in ("existing-peers", "peer-joined", "peer-left", "signal", "room-chat"):
            setattr(client, "on_" + name.replace("-", "_"), self._recorder(name))

    def _recorder(self, name: str) -> Callback:
        async def record(*args: Any) -> None:
            await self.events.put((name, list(args)))
        return record

    async def next(self, timeout: float = 5.0) -> tuple:
        return await asyncio.wait_for(self.events.get(), timeout=timeout)
