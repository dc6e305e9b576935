"""
OpenAI service for the realtime connection: connecting and building every
frame the bridge sends to the model.
"""
import json
from typing import Any, AsyncIterator, Dict, List

import structlog
import websockets
from websockets.protocol import State

from config import Settings, SILENCE_PROMPT, CONTINUE_PROMPT, GREETING_INSTRUCTION

logger = structlog.get_logger(__name__)


class RealtimeConnection:
    """Thin wrapper over an open websockets client to the Realtime API."""

    def __init__(self, ws):
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return getattr(self._ws, "state", None) is State.OPEN

    async def send_json(self, message: Dict[str, Any]) -> None:
        await self._ws.send(json.dumps(message))

    async def messages(self) -> AsyncIterator[str]:
        """Yield raw frames until the connection closes."""
        try:
            async for raw in self._ws:
                yield raw
        except websockets.ConnectionClosed as e:
            logger.info("OpenAI connection closed", code=e.rcvd.code if e.rcvd else None)

    async def close(self) -> None:
        await self._ws.close()


class OpenAIService:
    """Service for managing OpenAI realtime sessions."""

    @staticmethod
    async def connect_realtime(settings: Settings) -> RealtimeConnection:
        """
        Establish a websocket connection to OpenAI Realtime with the proper headers.
        Returns an *open* connection.
        """
        ws = await websockets.connect(
            settings.realtime_endpoint,
            additional_headers={
                "Authorization": f"Bearer {settings.openai_api_key}",
                "OpenAI-Beta": "realtime=v1",
            },
            max_size=None,
        )
        logger.info("Connected to the OpenAI Realtime API", model=settings.realtime_model)
        return RealtimeConnection(ws)

    @staticmethod
    def build_session_update(settings: Settings) -> Dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "turn_detection": {"type": "server_vad"},
                "input_audio_format": "g711_ulaw",
                "output_audio_format": "g711_ulaw",
                "voice": settings.voice,
                "instructions": settings.system_message,
                "modalities": ["text", "audio"],
                "temperature": settings.temperature,
            },
        }

    @staticmethod
    def greeting_messages() -> List[Dict[str, Any]]:
        """Frames that ask the model to open the conversation."""
        initial_conversation_item = {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": GREETING_INSTRUCTION}],
            },
        }
        return [initial_conversation_item, {"type": "response.create"}]

    @staticmethod
    def audio_append(payload: str) -> Dict[str, Any]:
        return {"type": "input_audio_buffer.append", "audio": payload}

    @staticmethod
    def speech_stopped() -> Dict[str, Any]:
        return {"type": "input_audio_buffer.speech_stopped"}

    @staticmethod
    def text_append(text: str) -> Dict[str, Any]:
        return {"type": "input_text.append", "text": text}

    @staticmethod
    def silence_prompt() -> Dict[str, Any]:
        return OpenAIService.text_append(SILENCE_PROMPT)

    @staticmethod
    def continue_prompt() -> Dict[str, Any]:
        return OpenAIService.text_append(CONTINUE_PROMPT)

    @staticmethod
    def truncate(item_id: str, audio_end_ms: int) -> Dict[str, Any]:
        return {
            "type": "conversation.item.truncate",
            "item_id": item_id,
            "content_index": 0,
            "audio_end_ms": max(0, audio_end_ms),
        }
