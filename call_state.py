from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class BridgeState(str, Enum):
    CONNECTING = "connecting"  # AI socket not yet open
    ACTIVE = "active"  # AI socket open, session not configured
    READY = "ready"  # session.update sent
    STREAMING = "streaming"  # media flowing both ways
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class CallSession:
    """
    Mutable per-call state shared between the Twilio receiver and the
    OpenAI receiver. Exists only between a stream's start and stop events.
    """
    stream_sid: str
    customer_number: Optional[str] = None
    latest_media_timestamp: int = 0  # ms (from Twilio media events)
    last_assistant_item: Optional[str] = None
    mark_queue: List[str] = field(default_factory=list)
    response_start_timestamp: Optional[int] = None  # ms
    accumulated_text: str = ""
    incoming_audio: bytearray = field(default_factory=bytearray)
    outgoing_audio: bytearray = field(default_factory=bytearray)
    caller_speaking: bool = False
    greeting_pending: bool = False

    def observe_media_timestamp(self, timestamp: int) -> None:
        if timestamp > self.latest_media_timestamp:
            self.latest_media_timestamp = timestamp

    def take_response_text(self) -> str:
        text = self.accumulated_text
        self.accumulated_text = ""
        return text

    def has_audio(self) -> bool:
        return bool(self.incoming_audio) or bool(self.outgoing_audio)

    def clear_audio(self) -> None:
        self.incoming_audio = bytearray()
        self.outgoing_audio = bytearray()
