"""Shared test fixtures and configuration."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from config import Settings
from context import AppContext
from models import LeadIn
from tests.fakes import (
    CUSTOMER_NUMBER,
    CountingLeadStore,
    FakeNotifier,
    FakeRealtime,
    FakeRecorder,
    FakeTelephonyWebSocket,
    FakeTranscriber,
)
from websocket_handler import CallSessionBridge


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with timers far enough out that they never fire unless a test shortens them."""
    return Settings(
        openai_api_key="sk-test",
        domain="example.ngrok.app",
        database_path=str(tmp_path / "leads.sqlite"),
        recordings_dir=str(tmp_path / "recordings"),
        recording_format="wav",
        session_init_delay_s=0,
        silence_timeout_s=30,
        nudge_delay_s=30,
        phone_number_from="+15550000000",
    )


@pytest_asyncio.fixture
async def store(settings: Settings) -> AsyncGenerator[CountingLeadStore, None]:
    lead_store = CountingLeadStore(settings.database_path)
    await lead_store.open()
    yield lead_store
    await lead_store.close()


@pytest_asyncio.fixture
async def ctx(settings: Settings, store: CountingLeadStore, tmp_path) -> AppContext:
    await store.add_lead(LeadIn(phone_number=CUSTOMER_NUMBER, name="Jane Doe"))
    return AppContext(
        settings,
        store=store,
        recorder=FakeRecorder(tmp_path / "recordings"),
        transcriber=FakeTranscriber(),
        notifier=FakeNotifier(),
    )


@pytest.fixture
def telephony() -> FakeTelephonyWebSocket:
    return FakeTelephonyWebSocket()


@pytest.fixture
def realtime() -> FakeRealtime:
    return FakeRealtime()


@pytest_asyncio.fixture
async def bridge(ctx: AppContext, telephony, realtime) -> AsyncGenerator[CallSessionBridge, None]:
    call_bridge = CallSessionBridge(telephony, ctx, openai_ws=realtime)
    yield call_bridge
    await call_bridge.close()
