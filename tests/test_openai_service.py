"""Tests for realtime frame builders and the connection wrapper."""

import dataclasses

import pytest
import websockets

from config import CONTINUE_PROMPT, SILENCE_PROMPT, Settings
from openai_service import OpenAIService, RealtimeConnection


def test_session_update_uses_settings():
    settings = dataclasses.replace(
        Settings(openai_api_key="sk-test"), voice="verse", temperature=0.6, system_message="Be brief."
    )
    session = OpenAIService.build_session_update(settings)["session"]

    assert session["voice"] == "verse"
    assert session["temperature"] == 0.6
    assert session["instructions"] == "Be brief."
    assert session["modalities"] == ["text", "audio"]


def test_prompt_frames():
    assert OpenAIService.silence_prompt() == {"type": "input_text.append", "text": SILENCE_PROMPT}
    assert OpenAIService.continue_prompt() == {"type": "input_text.append", "text": CONTINUE_PROMPT}
    assert OpenAIService.speech_stopped() == {"type": "input_audio_buffer.speech_stopped"}
    assert [m["type"] for m in OpenAIService.greeting_messages()] == ["conversation.item.create", "response.create"]


def test_truncate_never_negative():
    assert OpenAIService.truncate("item_1", -40)["audio_end_ms"] == 0
    assert OpenAIService.truncate("item_1", 1200)["audio_end_ms"] == 1200


class ClosingSocket:
    """Yields one frame, then fails the way a dropped connection does."""

    def __init__(self):
        self.sent = []

    async def send(self, data):
        self.sent.append(data)

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        yield '{"type": "session.created"}'
        raise websockets.ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_connection_messages_end_on_close():
    connection = RealtimeConnection(ClosingSocket())
    frames = [frame async for frame in connection.messages()]
    assert frames == ['{"type": "session.created"}']
    assert not connection.is_open

    await connection.send_json({"type": "response.create"})
    assert connection._ws.sent == ['{"type": "response.create"}']
