"""In-memory stand-ins for the Twilio socket, the realtime connection and the slow collaborators."""

import asyncio
import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from starlette.websockets import WebSocketState

from lead_store import LeadStore
from recording_service import RecordingPaths

CUSTOMER_NUMBER = "+15551234567"


class FakeTelephonyWebSocket:
    """Mimics the parts of starlette's WebSocket the bridge touches."""

    def __init__(self, incoming: Optional[List[Any]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.incoming = list(incoming or [])
        self.accepted = False
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    @property
    def closed(self) -> bool:
        return self.application_state == WebSocketState.DISCONNECTED

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED

    async def iter_text(self):
        for message in self.incoming:
            yield message if isinstance(message, str) else json.dumps(message)

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("event") == name]


class FakeRealtime:
    """A realtime connection whose inbound frames are fed by the test."""

    def __init__(self, frames: Optional[List[Any]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames or []:
            self.feed(frame)

    @property
    def is_open(self) -> bool:
        return self.open

    def feed(self, frame: Any) -> None:
        self._frames.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    async def send_json(self, message: Dict[str, Any]) -> None:
        if not self.open:
            raise ConnectionError("realtime connection closed")
        self.sent.append(message)

    async def messages(self):
        while self.open:
            frame = await self._frames.get()
            if frame is None:
                break
            yield frame

    async def close(self) -> None:
        self.open = False
        self._frames.put_nowait(None)

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]


class FakeRecorder:
    def __init__(self, directory: Path, fail: bool = False):
        self.directory = directory
        self.fail = fail
        self.calls: List[Dict[str, Any]] = []

    def ensure_recordings_dir(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    async def finalize(self, stream_sid: str, incoming: bytes, outgoing: bytes) -> RecordingPaths:
        self.calls.append({"stream_sid": stream_sid, "incoming": bytes(incoming), "outgoing": bytes(outgoing)})
        if self.fail:
            raise OSError("disk full")
        outgoing_path = self.directory / f"{stream_sid}_outgoing.wav" if outgoing else None
        incoming_path = self.directory / f"{stream_sid}_incoming.wav" if incoming else None
        return RecordingPaths(incoming_path=incoming_path, outgoing_path=outgoing_path)


class FakeTranscriber:
    def __init__(self, text: str = "Thanks for calling, goodbye."):
        self.text = text
        self.files: List[Path] = []

    async def transcribe(self, file_path) -> str:
        self.files.append(Path(file_path))
        return self.text


class FakeNotifier:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send_lead_captured(self, phone_number, email, lead=None):
        self.sent.append({"phone_number": phone_number, "email": email, "lead": lead})
        return None


class CountingLeadStore(LeadStore):
    """LeadStore that counts email updates."""

    def __init__(self, database_path: str):
        super().__init__(database_path)
        self.email_updates: List[tuple] = []

    async def update_lead_email(self, phone_number, email):
        self.email_updates.append((phone_number, email))
        return await super().update_lead_email(phone_number, email)


class FakeTwilioCall:
    def __init__(self, sid: str):
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self, fail_for: Optional[set] = None):
        self.created: List[Dict[str, Any]] = []
        self.fail_for = fail_for or set()

    def create(self, twiml: str, to: str, from_: str) -> FakeTwilioCall:
        from twilio.base.exceptions import TwilioException

        if to in self.fail_for:
            raise TwilioException(f"cannot call {to}")
        self.created.append({"twiml": twiml, "to": to, "from_": from_})
        return FakeTwilioCall(f"CA{len(self.created):032d}")


class FakeTwilioClient:
    def __init__(self, fail_for: Optional[set] = None):
        self.calls = FakeTwilioCalls(fail_for)


# =============================
# Twilio media stream events
# =============================
def ulaw(n: int = 160, value: int = 0xFF) -> bytes:
    """n bytes of μ-law audio (0xFF is digital silence)."""
    return bytes([value] * n)


def start_event(stream_sid: str = "MZ0001", customer_number: Optional[str] = "+15551234567") -> Dict[str, Any]:
    custom = {"customerNumber": customer_number} if customer_number else {}
    return {
        "event": "start",
        "sequenceNumber": "1",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": "CA0001",
            "tracks": ["inbound"],
            "customParameters": custom,
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
    }


def media_event(audio: bytes, timestamp: int, stream_sid: str = "MZ0001",
                track: str = "inbound", chunk: Optional[str] = None) -> Dict[str, Any]:
    media = {
        "track": track,
        "timestamp": str(timestamp),
        "payload": base64.b64encode(audio).decode("ascii"),
    }
    if chunk is not None:
        media["chunk"] = chunk
    return {"event": "media", "streamSid": stream_sid, "media": media}


def mark_event(stream_sid: str = "MZ0001", name: str = "responsePart") -> Dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}


def stop_event(stream_sid: str = "MZ0001") -> Dict[str, Any]:
    return {"event": "stop", "streamSid": stream_sid, "stop": {"callSid": "CA0001"}}


def audio_delta(audio: bytes, item_id: str = "item_1") -> Dict[str, Any]:
    return {"type": "response.audio.delta", "item_id": item_id,
            "delta": base64.b64encode(audio).decode("ascii")}


def text_delta(text: str) -> Dict[str, Any]:
    return {"type": "response.text.delta", "delta": text}
