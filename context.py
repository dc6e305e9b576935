"""
Application context: settings plus every collaborator, with one lifecycle.
"""
from typing import Awaitable, Callable, Optional

import structlog
from openai import AsyncOpenAI

from config import Settings
from dialer_service import DialerService
from email_service import EmailService
from lead_store import LeadStore
from openai_service import OpenAIService, RealtimeConnection
from recording_service import RecordingService
from transcription_service import TranscriptionService

logger = structlog.get_logger(__name__)

RealtimeConnector = Callable[[Settings], Awaitable[RealtimeConnection]]


class AppContext:
    """Built once at startup and passed to routes and bridges.

    Collaborators may be swapped by passing them in (tests do this).
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[LeadStore] = None,
        recorder: Optional[RecordingService] = None,
        transcriber: Optional[TranscriptionService] = None,
        dialer: Optional[DialerService] = None,
        notifier: Optional[EmailService] = None,
        connect_realtime: Optional[RealtimeConnector] = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings
        self.openai_client = openai_client
        self.store = store or LeadStore(settings.database_path)
        self.recorder = recorder or RecordingService(settings.recordings_dir, settings.recording_format)
        if transcriber is None:
            if self.openai_client is None:
                self.openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
            transcriber = TranscriptionService(
                self.openai_client,
                model=settings.transcription_model,
                language=settings.transcription_language,
            )
        self.transcriber = transcriber
        self.dialer = dialer or DialerService(settings, self.store)
        self.notifier = notifier or EmailService(
            settings.resend_api_key, settings.resend_from, settings.notify_recipients
        )
        self.connect_realtime: RealtimeConnector = connect_realtime or OpenAIService.connect_realtime

    async def open(self) -> None:
        await self.store.open()
        self.recorder.ensure_recordings_dir()
        if self.settings.dev_phone:
            try:
                await self.store.add_dev_phone(self.settings.dev_phone)
                logger.info("Twilio dev phone added to the database", phone_number=self.settings.dev_phone)
            except ValueError as e:
                logger.warning("Dev phone not added", error=str(e))
        logger.info("Application context opened")

    async def close(self) -> None:
        await self.store.close()
        if self.openai_client is not None:
            await self.openai_client.close()
        logger.info("Application context closed")
