"""Tests for the HTTP and WebSocket routes."""

import dataclasses

import pytest
from fastapi.testclient import TestClient

from context import AppContext
from lead_store import LeadStore
from main import create_app
from tests.fakes import FakeNotifier, FakeRealtime, FakeRecorder, FakeTranscriber, start_event, stop_event


class FakeDialer:
    def __init__(self):
        self.runs = 0

    async def initiate_calls_to_all_numbers(self):
        self.runs += 1
        return []


@pytest.fixture
def app_ctx(settings, tmp_path) -> AppContext:
    """A context whose store is opened by the app's own lifespan."""
    return AppContext(
        settings,
        store=LeadStore(settings.database_path),
        recorder=FakeRecorder(tmp_path / "recordings"),
        transcriber=FakeTranscriber(),
        dialer=FakeDialer(),
        notifier=FakeNotifier(),
    )


@pytest.fixture
def client(app_ctx):
    with TestClient(create_app(app_ctx)) as test_client:
        yield test_client


def test_index(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "running" in response.json()["message"]


@pytest.mark.parametrize("method, path", [("post", "/incoming-call"), ("post", "/")])
def test_incoming_call_twiml(client, method, path):
    response = getattr(client, method)(path, data={"From": "+1 (555) 123-4567", "CallSid": "CA1"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    body = response.text
    assert '<Stream url="wss://example.ngrok.app/media-stream">' in body
    assert '<Parameter name="customerNumber" value="+15551234567" />' in body


def test_incoming_call_get_uses_query(client):
    response = client.get("/incoming-call", params={"From": "5551234567"})
    assert 'value="+15551234567"' in response.text


def test_admin_lead_crud(client):
    created = client.post("/api/leads", json={"phone_number": "555-123-4567", "name": "Jane"})
    assert created.status_code == 201
    lead = created.json()
    assert lead["phone_number"] == "+15551234567"
    assert lead["status"] == "new"

    assert client.post("/api/leads", json={"phone_number": "12"}).status_code == 400
    assert client.post("/api/leads", json={"name": "no phone"}).status_code == 422

    listed = client.get("/api/leads").json()
    assert [row["id"] for row in listed] == [lead["id"]]

    updated = client.put(f"/api/leads/{lead['id']}", json={"email": "jane@example.com", "status": "called"})
    assert updated.status_code == 200
    assert updated.json()["email"] == "jane@example.com"
    assert updated.json()["status"] == "called"

    assert client.put(f"/api/leads/{lead['id']}", json={"phone_number": "99"}).status_code == 400
    assert client.put("/api/leads/9999", json={"name": "ghost"}).status_code == 404

    assert client.delete(f"/api/leads/{lead['id']}").json() == {"success": True}
    assert client.delete(f"/api/leads/{lead['id']}").status_code == 404


def test_lead_views(client, app_ctx):
    client.post("/api/leads", json={"phone_number": "5551234567", "name": "Jane"})
    client.portal.call(app_ctx.store.add_conversation, "5551234567", "What's your email?", True)
    client.portal.call(app_ctx.store.add_conversation, "5551234567", "User audio received", False)

    lead = client.get("/lead/+15551234567").json()
    assert lead["name"] == "Jane"
    assert [c["content"] for c in lead["conversations"]] == ["What's your email?"]
    assert client.get("/lead/5550000000").status_code == 404

    history = client.get("/conversation-history/5551234567").json()
    assert len(history) == 2

    page = client.get("/leads", params={"page": 1, "pageSize": 5}).json()
    assert page["currentPage"] == 1
    assert page["pageSize"] == 5
    assert page["totalPages"] == 1
    assert page["leads"][0]["conversations"][0]["content"] == "What's your email?"


def test_start_calls_runs_in_background(client, app_ctx):
    response = client.get("/start-calls")
    assert response.status_code == 200
    assert app_ctx.dialer.runs == 1


def test_import_csv(client, app_ctx, tmp_path):
    assert client.get("/import-csv").status_code == 400

    app_ctx.settings = dataclasses.replace(app_ctx.settings, csv_file_path=str(tmp_path / "missing.csv"))
    assert client.get("/import-csv").status_code == 500

    csv_path = tmp_path / "leads.csv"
    csv_path.write_text("name,phone_number\nAda,5552223333\nBad,1\n")
    app_ctx.settings = dataclasses.replace(app_ctx.settings, csv_file_path=str(csv_path))
    body = client.get("/import-csv").json()
    assert body["imported"] == 1
    assert body["skipped"] == 1


def test_db_check_routes(client):
    assert client.get("/test-lead").status_code == 404
    assert client.get("/test-db-write").json() == {"success": True}
    assert client.get("/test-lead").json()["email"] == "test@example.com"
    assert client.get("/test-db").json()["count"] == 1


def test_media_stream_websocket(client, app_ctx):
    realtime = FakeRealtime()
    connects = []

    async def connect(settings):
        connects.append(settings)
        return realtime

    app_ctx.connect_realtime = connect
    app_ctx.settings = dataclasses.replace(app_ctx.settings, speech_mode="provider_tts")
    with client.websocket_connect("/media-stream") as ws:
        ws.send_json(start_event())
        greeting = ws.receive_json()
        ws.send_json(stop_event())
        closing = ws.receive()

    assert greeting == {"event": "tts", "streamSid": "MZ0001", "text": app_ctx.settings.greeting}
    assert closing["type"] == "websocket.close"
    assert len(connects) == 1
    assert not realtime.is_open
