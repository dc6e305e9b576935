"""
WebSocket handler for managing realtime communication between Twilio and OpenAI.

One CallSessionBridge per media-stream connection. Twilio events and OpenAI
events arrive on two tasks that share one event loop; session state is only
touched from that loop.
"""
import asyncio
import base64
from typing import Any, Dict, Optional

import structlog
from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect
from starlette.websockets import WebSocketState

from call_state import BridgeState, CallSession
from config import LOG_EVENT_TYPES, MARK_NAME, USER_AUDIO_PLACEHOLDER
from context import AppContext
from models import LeadStatus
from openai_service import OpenAIService
from timers import RearmableTimer
from utils import extract_email, normalize_event_to_dict, safe_task, standardize_phone_number

logger = structlog.get_logger(__name__)


class CallSessionBridge:
    """Bridges one Twilio media stream to one OpenAI realtime connection."""

    def __init__(self, websocket, ctx: AppContext, openai_ws=None):
        self.websocket = websocket
        self.ctx = ctx
        self.settings = ctx.settings
        self.capabilities = ctx.settings.capabilities()
        self.openai_ws = None
        self.state = BridgeState.CONNECTING
        self.session: Optional[CallSession] = None
        self.silence_timer = RearmableTimer(self.settings.silence_timeout_s, self._on_silence, name="silence")
        self.nudge_timer = RearmableTimer(self.settings.nudge_delay_s, self._on_nudge, name="nudge")
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        if openai_ws is not None:
            self.on_ai_connected(openai_ws)

    # =============================
    # Connection state
    # =============================
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ai_open(self) -> bool:
        return self.openai_ws is not None and self.openai_ws.is_open

    @property
    def telephony_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def _log(self, **extra):
        session = self.session
        return logger.bind(
            stream_sid=session.stream_sid if session else None,
            customer_number=session.customer_number if session else None,
            **extra,
        )

    async def _send_to_ai(self, message: Dict[str, Any]) -> bool:
        if not self.ai_open:
            logger.debug("OpenAI WebSocket is not open, dropping message", type=message.get("type"))
            return False
        try:
            await self.openai_ws.send_json(message)
            return True
        except Exception as e:
            logger.warning("Send to OpenAI failed", type=message.get("type"), error=str(e))
            return False

    async def _send_to_telephony(self, message: Dict[str, Any]) -> bool:
        if not self.telephony_open:
            logger.debug("Twilio WebSocket is not open, dropping message", event=message.get("event"))
            return False
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning("Send to Twilio failed", event=message.get("event"), error=str(e))
            return False

    def _session_for(self, data: Dict[str, Any]) -> Optional[CallSession]:
        """The live session if `data` belongs to it, else None."""
        session = self.session
        if session is None:
            return None
        stream_sid = data.get("streamSid")
        if stream_sid and stream_sid != session.stream_sid:
            logger.warning("Event for unknown stream ignored", stream_sid=stream_sid,
                           active_stream_sid=session.stream_sid, event=data.get("event"))
            return None
        return session

    # =============================
    # AI connection lifecycle
    # =============================
    def on_ai_connected(self, openai_ws) -> None:
        self.openai_ws = openai_ws
        if self.state is BridgeState.CONNECTING:
            self.state = BridgeState.ACTIVE

    async def on_ai_open(self) -> None:
        """Configure the realtime session once the provider side has settled."""
        await asyncio.sleep(self.settings.session_init_delay_s)
        if self._closed:
            return
        session_update = OpenAIService.build_session_update(self.settings)
        logger.info("Sending session update", voice=self.settings.voice)
        if not await self._send_to_ai(session_update):
            return

        self.state = BridgeState.READY
        if self.session is not None:
            self.state = BridgeState.STREAMING
            if self.session.greeting_pending:
                self.session.greeting_pending = False
                await self._request_ai_greeting()

    async def _request_ai_greeting(self) -> None:
        for message in OpenAIService.greeting_messages():
            await self._send_to_ai(message)

    # =============================
    # Twilio -> bridge
    # =============================
    async def handle_telephony_message(self, message: Any) -> None:
        try:
            data = normalize_event_to_dict(message)
        except ValueError as e:
            logger.error("Malformed Twilio message", error=str(e), raw=message)
            return
        try:
            await self.handle_telephony_event(data)
        except Exception:
            logger.exception("Error processing Twilio message", raw=message)

    async def handle_telephony_event(self, data: Dict[str, Any]) -> None:
        event = data.get("event")
        if event == "media":
            await self._on_media(data)
        elif event == "start":
            await self._on_start(data)
        elif event == "mark":
            self._on_mark(data)
        elif event == "stop":
            await self._on_stop(data)
        elif event == "connected":
            logger.info("Twilio media stream connected", protocol=data.get("protocol"))
        else:
            logger.info("Received non-media event", event=event)

    async def _on_start(self, data: Dict[str, Any]) -> None:
        start = data.get("start") or {}
        stream_sid = start.get("streamSid") or data.get("streamSid")
        if not stream_sid:
            raise ValueError("start event without streamSid")

        if self.session is not None:
            self._log().warning("Stream restarted, discarding previous session", new_stream_sid=stream_sid)
            self.silence_timer.cancel()
            self.nudge_timer.cancel()

        custom = start.get("customParameters") or {}
        raw_number = custom.get("customerNumber") or start.get("to") or start.get("To")
        customer_number = standardize_phone_number(raw_number) if raw_number else None

        self.session = CallSession(stream_sid=stream_sid, customer_number=customer_number)
        if self.state is BridgeState.READY:
            self.state = BridgeState.STREAMING
        log = self._log()
        log.info("Incoming stream started")

        if not customer_number:
            log.error("Customer number not found in start event", raw_number=raw_number)
            return
        if self.settings.send_greeting:
            await self._send_greeting()

    async def _send_greeting(self) -> None:
        session = self.session
        if self.capabilities.sends_provider_tts:
            await self._send_to_telephony(
                {"event": "tts", "streamSid": session.stream_sid, "text": self.settings.greeting}
            )
            self._log().info("Sent initial greeting", greeting=self.settings.greeting)
        if self.capabilities.forwards_ai_audio:
            if self.state in (BridgeState.READY, BridgeState.STREAMING):
                await self._request_ai_greeting()
            else:
                session.greeting_pending = True

    async def _on_media(self, data: Dict[str, Any]) -> None:
        session = self._session_for(data)
        if session is None:
            logger.debug("Media event without an active stream ignored", stream_sid=data.get("streamSid"))
            return

        media = data["media"]
        payload = media["payload"]
        track = media.get("track")
        audio = base64.b64decode(payload, validate=True)

        if track != "outbound":
            session.incoming_audio.extend(audio)
        if media.get("timestamp") is not None:
            session.observe_media_timestamp(int(media["timestamp"]))

        await self._send_to_ai(OpenAIService.audio_append(payload))
        self.silence_timer.rearm()

        if not session.caller_speaking:
            session.caller_speaking = True
            await self._record_conversation(session, USER_AUDIO_PLACEHOLDER, is_ai_response=False)

        if track == "inbound" and media.get("chunk") == "end":
            session.caller_speaking = False
            await self._send_to_ai(OpenAIService.speech_stopped())

    def _on_mark(self, data: Dict[str, Any]) -> None:
        session = self._session_for(data)
        if session is not None and session.mark_queue:
            session.mark_queue.pop(0)

    async def _on_stop(self, data: Dict[str, Any]) -> None:
        session = self._session_for(data)
        if session is None:
            logger.info("Ignoring stop for unknown stream", stream_sid=data.get("streamSid"))
            return

        log = self._log()
        log.info("Call ended")
        self.state = BridgeState.CLOSING
        self.silence_timer.cancel()
        self.nudge_timer.cancel()
        # Outlives cancellation of the task reading Twilio events.
        self._stop_task = asyncio.create_task(self._end_call(session), name="call-teardown")
        await asyncio.shield(self._stop_task)

    async def wait_for_stop(self) -> None:
        """Wait until a call teardown started by a stop event has finished."""
        if self._stop_task is not None:
            await asyncio.shield(self._stop_task)

    async def _end_call(self, session: CallSession) -> None:
        try:
            await self._finalize_call(session)
        finally:
            session.clear_audio()
            session.mark_queue.clear()
            session.accumulated_text = ""
            self.session = None
            await self.close()

    async def _finalize_call(self, session: CallSession) -> None:
        log = self._log()
        if not session.has_audio():
            log.info("No audio data to save")
            return

        paths = None
        if self.capabilities.records_audio:
            try:
                paths = await self.ctx.recorder.finalize(
                    session.stream_sid, session.incoming_audio, session.outgoing_audio
                )
            except Exception:
                log.exception("Error saving recording")

        if paths is not None and paths.outgoing_path and self.capabilities.transcribes_after_call:
            try:
                transcript = await self.ctx.transcriber.transcribe(paths.outgoing_path)
                await self._record_conversation(session, f"Outgoing: {transcript}", is_ai_response=True)
                await self._capture_email(session, transcript)
            except Exception:
                log.exception("Error transcribing recording")

        if session.customer_number:
            try:
                await self.ctx.store.update_lead_status(session.customer_number, LeadStatus.CALL_COMPLETED)
            except Exception:
                log.exception("Error updating lead status")

    # =============================
    # OpenAI -> bridge
    # =============================
    async def handle_ai_message(self, message: Any) -> None:
        try:
            response = normalize_event_to_dict(message)
        except ValueError as e:
            logger.error("Malformed OpenAI message", error=str(e), raw=message)
            return
        try:
            await self.handle_ai_event(response)
        except Exception:
            logger.exception("Error processing OpenAI message", raw=message)

    async def handle_ai_event(self, response: Dict[str, Any]) -> None:
        t = response.get("type")
        if t in LOG_EVENT_TYPES:
            if t == "error":
                logger.error("OpenAI error event", error=response.get("error"))
            else:
                logger.info("OpenAI event", type=t)

        if t == "response.audio.delta":
            await self._on_audio_delta(response)
        elif t == "response.text.delta":
            if self.session is not None and response.get("delta"):
                self.session.accumulated_text += response["delta"]
        elif t == "response.content.done":
            await self._on_turn_complete()
        elif t == "input_audio_buffer.speech_started" and self.settings.barge_in:
            await self._on_speech_started()

    async def _on_audio_delta(self, response: Dict[str, Any]) -> None:
        session = self.session
        delta = response.get("delta")
        if session is None or not delta or not self.capabilities.forwards_ai_audio:
            return

        audio = base64.b64decode(delta)
        await self._send_to_telephony({
            "event": "media",
            "streamSid": session.stream_sid,
            "media": {"payload": base64.b64encode(audio).decode("ascii")},
        })
        session.outgoing_audio.extend(audio)
        if session.response_start_timestamp is None:
            session.response_start_timestamp = session.latest_media_timestamp
        if response.get("item_id"):
            session.last_assistant_item = response["item_id"]
        await self._send_mark(session)

    async def _send_mark(self, session: CallSession) -> None:
        if await self._send_to_telephony(
            {"event": "mark", "streamSid": session.stream_sid, "mark": {"name": MARK_NAME}}
        ):
            session.mark_queue.append(MARK_NAME)

    async def _on_turn_complete(self) -> None:
        session = self.session
        if session is None:
            return
        ai_response = session.take_response_text()
        session.caller_speaking = False
        session.response_start_timestamp = None

        if ai_response:
            self._log().info("AI response complete", preview=ai_response[:50])
            if session.customer_number:
                await self._record_conversation(session, ai_response, is_ai_response=True)
                await self._capture_email(session, ai_response)
            if self.capabilities.sends_provider_tts:
                await self._send_to_telephony(
                    {"event": "tts", "streamSid": session.stream_sid, "text": ai_response}
                )
        self.nudge_timer.rearm()

    async def _on_speech_started(self) -> None:
        """Caller barged in: cut the assistant's audio where the caller heard it."""
        session = self.session
        if session is None:
            return
        if session.mark_queue and session.response_start_timestamp is not None:
            elapsed = session.latest_media_timestamp - session.response_start_timestamp
            if session.last_assistant_item:
                await self._send_to_ai(OpenAIService.truncate(session.last_assistant_item, elapsed))
            await self._send_to_telephony({"event": "clear", "streamSid": session.stream_sid})
            session.mark_queue.clear()
        session.last_assistant_item = None
        session.response_start_timestamp = None

    # =============================
    # Side effects
    # =============================
    async def _record_conversation(self, session: CallSession, content: str, is_ai_response: bool) -> None:
        if not session.customer_number:
            return
        try:
            await self.ctx.store.add_conversation(session.customer_number, content, is_ai_response)
        except Exception:
            self._log().exception("Error storing conversation entry", is_ai_response=is_ai_response)

    async def _capture_email(self, session: CallSession, text: str) -> None:
        email = extract_email(text)
        log = self._log()
        if not email:
            log.debug("No email found in the AI response")
            return
        if not session.customer_number:
            log.warning("Email found but no customer number to attach it to", email=email)
            return

        log.info("Extracted email", email=email)
        try:
            lead = await self.ctx.store.update_lead_email(session.customer_number, email)
        except Exception:
            log.exception("Error updating email")
            return
        await self.ctx.notifier.send_lead_captured(session.customer_number, email, lead)

    async def _on_silence(self) -> None:
        if self.session is not None:
            self._log().info("Silence timeout, prompting AI")
            await self._send_to_ai(OpenAIService.silence_prompt())

    async def _on_nudge(self) -> None:
        if self.session is not None:
            await self._send_to_ai(OpenAIService.continue_prompt())

    # =============================
    # Teardown
    # =============================
    async def close(self) -> None:
        """Release timers and close both connections. Safe to call more than once.

        The first call starts the teardown; every call waits for it. A caller
        that is cancelled while waiting does not interrupt the teardown.
        """
        if self._close_task is None:
            self._closed = True
            self.state = BridgeState.CLOSING
            self._close_task = asyncio.create_task(self._teardown(), name="bridge-close")
        await asyncio.shield(self._close_task)

    async def _teardown(self) -> None:
        self.silence_timer.cancel()
        self.nudge_timer.cancel()
        if self.session is not None:
            self.session.clear_audio()
            self.session = None

        if self.ai_open:
            try:
                await self.openai_ws.close()
            except Exception as e:
                logger.warning("Error closing OpenAI connection", error=str(e))
        if self.telephony_open:
            try:
                await self.websocket.close()
            except Exception as e:
                logger.warning("Error closing Twilio connection", error=str(e))
        self.state = BridgeState.CLOSED
        logger.info("Call session bridge closed")


class WebSocketHandler:
    """Handles WebSocket connections for realtime voice communication."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    async def handle_media_stream(self, websocket: WebSocket):
        """Main WebSocket handler for media stream from Twilio."""
        await websocket.accept()
        logger.info("Client connected")
        bridge = CallSessionBridge(websocket, self.ctx)

        try:
            openai_ws = await self.ctx.connect_realtime(self.ctx.settings)
        except Exception as e:
            logger.error("OpenAI bridge failed", error=str(e))
            await bridge.close()
            return

        bridge.on_ai_connected(openai_ws)
        recv_task = asyncio.create_task(
            safe_task(self.receive_from_twilio(websocket, bridge), "twilio->openai"), name="twilio->openai"
        )
        send_task = asyncio.create_task(
            safe_task(self.receive_from_openai(openai_ws, bridge), "openai->twilio"), name="openai->twilio"
        )
        try:
            done, pending = await asyncio.wait({recv_task, send_task}, return_when=asyncio.FIRST_COMPLETED)
            await bridge.wait_for_stop()
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        finally:
            await bridge.close()

    @staticmethod
    async def receive_from_twilio(websocket: WebSocket, bridge: CallSessionBridge):
        try:
            async for message in websocket.iter_text():
                await bridge.handle_telephony_message(message)
                if bridge.closed:
                    break
        except WebSocketDisconnect:
            logger.info("Twilio WebSocket disconnected")

    @staticmethod
    async def receive_from_openai(openai_ws, bridge: CallSessionBridge):
        await bridge.on_ai_open()
        async for message in openai_ws.messages():
            await bridge.handle_ai_message(message)
            if bridge.closed:
                break
        logger.info("Disconnected from the OpenAI Realtime API")
