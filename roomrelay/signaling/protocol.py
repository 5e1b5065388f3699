"""Relay wire protocol.

Every frame is a JSON text message carrying one event::

    {"event": "join-room", "args": ["lobby", "alice"]}

``args`` is the ordered argument list of the event. Inbound events are
validated here so the server only ever sees well-shaped arguments.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union


class ProtocolError(ValueError):
    """Raised for frames that cannot be decoded into a known event."""


class EventName(str, Enum):
    """Event names on the wire."""
    # Client -> server
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    # Both directions
    SIGNAL = "signal"
    ROOM_CHAT = "room-chat"
    # Server -> client
    WELCOME = "welcome"
    EXISTING_PEERS = "existing-peers"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"


SIGNAL_KINDS = frozenset({"offer", "answer", "ice"})


@dataclass
class Event:
    """One named event with its ordered arguments."""
    name: EventName
    args: List[Any] = field(default_factory=list)

    def to_json(self) -> str:
        """Serialize event to a text frame."""
        return json.dumps({"event": self.name.value, "args": self.args})

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Event":
        """Deserialize a text frame.

        Args:
            data: Raw frame as received from the transport

        Returns:
            Event object

        Raises:
            ProtocolError: If the frame is not a well-formed event
        """
        if not isinstance(data, str):
            raise ProtocolError("Binary frames are not supported")

        try:
            message = json.loads(data)
        except (ValueError, RecursionError) as e:
            raise ProtocolError(f"Invalid JSON: {e}") from e

        if not isinstance(message, dict):
            raise ProtocolError("Frame must be a JSON object")

        try:
            name = EventName(message.get("event"))
        except ValueError:
            raise ProtocolError(f"Unknown event: {message.get('event')!r}") from None

        args = message.get("args", [])
        if not isinstance(args, list):
            raise ProtocolError("Event args must be a list")

        return cls(name=name, args=args)


@dataclass
class SignalEnvelope:
    """Addressed negotiation payload in transit.

    The relay fills in ``sender``; ``message`` is forwarded exactly as the
    sender wrote it.
    """
    target: str
    message: dict
    sender: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.message["type"]

    @property
    def payload(self) -> Any:
        return self.message.get("payload")


@dataclass
class ChatMessage:
    """Chat line stamped by the relay."""
    sender: str
    name: str
    text: str
    ts: int  # milliseconds since epoch, relay clock

    def to_wire(self) -> dict:
        return {"from": self.sender, "name": self.name, "text": self.text, "ts": self.ts}


def parse_join_room(args: List[Any]) -> Tuple[str, Optional[str]]:
    """Validate ``join-room`` arguments.

    Returns:
        (room_key, display_name); display_name is None when absent or blank
    """
    if not args or not isinstance(args[0], str):
        raise ProtocolError("join-room requires a string room key")

    name = args[1] if len(args) > 1 else None
    if not isinstance(name, str) or not name:
        name = None

    return args[0], name


def parse_signal(args: List[Any]) -> SignalEnvelope:
    """Validate ``signal`` arguments into an envelope without a sender."""
    if len(args) < 2 or not isinstance(args[0], str):
        raise ProtocolError("signal requires a target id and a message")

    message = args[1]
    if not isinstance(message, dict) or message.get("type") not in SIGNAL_KINDS:
        raise ProtocolError(f"signal message type must be one of {sorted(SIGNAL_KINDS)}")

    return SignalEnvelope(target=args[0], message=message)


def parse_room_chat(args: List[Any]) -> str:
    """Validate ``room-chat`` arguments."""
    if not args or not isinstance(args[0], str):
        raise ProtocolError("room-chat requires a text argument")
    return args[0]


# Server -> client builders

def welcome(connection_id: str) -> Event:
    return Event(EventName.WELCOME, [connection_id])


def existing_peers(peer_ids: List[str]) -> Event:
    return Event(EventName.EXISTING_PEERS, [list(peer_ids)])


def peer_joined(peer_id: str, user_name: str) -> Event:
    return Event(EventName.PEER_JOINED, [{"peerId": peer_id, "userName": user_name}])


def peer_left(peer_id: str) -> Event:
    return Event(EventName.PEER_LEFT, [peer_id])


def relayed_signal(envelope: SignalEnvelope) -> Event:
    return Event(EventName.SIGNAL, [envelope.sender, envelope.message])


def room_chat(chat: ChatMessage) -> Event:
    return Event(EventName.ROOM_CHAT, [chat.to_wire()])
