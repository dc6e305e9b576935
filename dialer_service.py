"""
Outbound dialing through Twilio.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from config import OUTBOUND_CALL_SAY, Settings
from lead_store import LeadStore
from models import LeadIn, LeadStatus
from utils import standardize_phone_number

logger = structlog.get_logger(__name__)


def build_stream_twiml(stream_url: str, customer_number: Optional[str], say: Optional[str] = None) -> str:
    """TwiML that connects the call's media to our stream with the customer as a parameter."""
    response = VoiceResponse()
    if say:
        response.say(say)
    connect = Connect()
    stream = connect.stream(url=stream_url)
    if customer_number:
        stream.parameter(name="customerNumber", value=customer_number)
    response.append(connect)
    return str(response)


class DialerService:
    """Places calls and records the resulting lead status."""

    def __init__(self, settings: Settings, store: LeadStore,
                 client_factory: Optional[Callable[[], Client]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.settings = settings
        self.store = store
        self._client_factory = client_factory or self._default_client
        self._client: Optional[Client] = None
        self._sleep = sleep

    def _default_client(self) -> Client:
        return Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def place_call(self, to: str, stream_url: Optional[str] = None) -> Optional[str]:
        """Call `to` and stream it to `stream_url`. Returns the call SID, or None on failure."""
        standardized = standardize_phone_number(to)
        if not standardized:
            logger.error("Invalid phone number", phone_number=to)
            return None

        url = stream_url or self.settings.media_stream_url
        try:
            if not await self.store.get_lead(standardized):
                await self.store.add_lead(LeadIn(phone_number=standardized, name="Unknown"))

            twiml = build_stream_twiml(url, standardized, say=OUTBOUND_CALL_SAY)
            call = await asyncio.to_thread(
                self.client.calls.create,
                twiml=twiml,
                to=standardized,
                from_=self.settings.phone_number_from,
            )
            logger.info("Call placed", call_sid=call.sid, phone_number=standardized)
            await self.store.update_lead_status(standardized, LeadStatus.CALLED)
            return call.sid
        except Exception:
            logger.exception("Error making call", phone_number=standardized)
            return None

    async def initiate_calls_to_all_numbers(self) -> List[str]:
        """Dial every lead, pausing between calls. Returns the SIDs of placed calls."""
        placed: List[str] = []
        dev_phone = standardize_phone_number(self.settings.dev_phone)

        if self.settings.dial_dev_phone_only:
            if not dev_phone:
                logger.warning("Dev phone number is invalid", dev_phone=self.settings.dev_phone)
                return placed
            logger.info("Initiating call to dev phone only", phone_number=dev_phone)
            sid = await self.place_call(dev_phone)
            if sid:
                placed.append(sid)
            return placed

        phone_numbers = await self.store.get_all_phone_numbers()
        logger.info("Found phone numbers to call", count=len(phone_numbers))
        for index, phone_number in enumerate(phone_numbers):
            if index:
                await self._sleep(self.settings.call_interval_s)
            sid = await self.place_call(phone_number)
            if sid:
                placed.append(sid)
            else:
                logger.info("Skipped call due to error", phone_number=phone_number)

        logger.info("Finished initiating all calls", placed=len(placed))
        return placed
