"""
FastAPI routes for Twilio webhooks, the media stream and lead administration.
"""
from fastapi import BackgroundTasks, FastAPI, Request, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse

import structlog

from context import AppContext
from csv_import import import_csv
from dialer_service import build_stream_twiml
from lead_store import TEST_PHONE_NUMBER
from models import LeadIn, LeadPage, LeadUpdate
from utils import standardize_phone_number
from websocket_handler import WebSocketHandler

logger = structlog.get_logger(__name__)


class Routes:
    """Contains all FastAPI route handlers."""

    def __init__(self, app: FastAPI, ctx: AppContext):
        self.app = app
        self.ctx = ctx
        self.ws_handler = WebSocketHandler(ctx)
        self._setup_routes()

    def _setup_routes(self):
        """Setup all route handlers."""
        self.app.get("/", response_class=JSONResponse)(self.index_page)
        self.app.post("/", response_class=HTMLResponse)(self.root_incoming)
        self.app.api_route("/incoming-call", methods=["GET", "POST"])(self.handle_incoming_call)
        self.app.websocket("/media-stream")(self.media_stream)

        self.app.get("/conversation-history/{phone_number}")(self.conversation_history)
        self.app.get("/lead/{phone_number}")(self.lead_data)
        self.app.get("/leads", response_model=LeadPage)(self.paginated_leads)
        self.app.get("/start-calls")(self.start_calls)
        self.app.get("/import-csv")(self.import_csv)
        self.app.get("/test-db-write")(self.test_db_write)
        self.app.get("/test-db")(self.test_db)
        self.app.get("/test-lead")(self.test_lead)

        self.app.get("/api/leads")(self.list_leads)
        self.app.post("/api/leads", status_code=201)(self.create_lead)
        self.app.put("/api/leads/{lead_id}")(self.update_lead)
        self.app.delete("/api/leads/{lead_id}")(self.delete_lead)

    # =============================
    # Twilio
    # =============================
    async def index_page(self):
        """Root endpoint returning status information."""
        return {"message": "Voice Lead Agent server is running."}

    async def root_incoming(self, request: Request):
        """Handle POST requests to root - redirect to incoming call handler."""
        return await self.handle_incoming_call(request)

    async def handle_incoming_call(self, request: Request):
        """Handle incoming call webhook from Twilio."""
        params = dict(request.query_params)
        if request.method == "POST":
            form = await request.form()
            params.update({k: v for k, v in form.items() if isinstance(v, str)})

        host = self.ctx.settings.domain or request.url.hostname
        if "ngrok" in request.headers.get("host", ""):
            host = request.headers["host"]
        stream_url = f"wss://{host}/media-stream"

        customer_number = standardize_phone_number(params.get("From"))
        logger.info("Incoming call", stream_url=stream_url, customer_number=customer_number)
        twiml = build_stream_twiml(stream_url, customer_number)
        return HTMLResponse(content=twiml, media_type="application/xml")

    async def media_stream(self, websocket: WebSocket):
        await self.ws_handler.handle_media_stream(websocket)

    # =============================
    # Lead data
    # =============================
    async def conversation_history(self, phone_number: str):
        return await self.ctx.store.get_conversation_history(phone_number)

    async def lead_data(self, phone_number: str):
        lead = await self.ctx.store.get_lead_data(phone_number)
        if lead is None:
            return JSONResponse(status_code=404, content={"error": "Lead not found"})
        return lead

    async def paginated_leads(self, page: int = 1, pageSize: int = 10):
        return await self.ctx.store.get_paginated_lead_data(page, pageSize)

    async def start_calls(self, background_tasks: BackgroundTasks):
        background_tasks.add_task(self.ctx.dialer.initiate_calls_to_all_numbers)
        return {"message": "Calls initiated"}

    async def import_csv(self):
        csv_file_path = self.ctx.settings.csv_file_path
        if not csv_file_path:
            return JSONResponse(status_code=400, content={"error": "CSV_FILE_PATH is not set"})
        try:
            result = await import_csv(self.ctx.store, csv_file_path)
        except Exception as e:
            logger.error("Error importing CSV", file_path=csv_file_path, error=str(e))
            return JSONResponse(status_code=500, content={"error": f"Error importing CSV: {e}"})
        return {
            "message": "CSV imported successfully",
            "imported": result.imported,
            "skipped": result.skipped,
            "errors": result.errors,
        }

    async def test_db_write(self):
        success = await self.ctx.store.test_database_write()
        return {"success": success}

    async def test_db(self):
        leads = await self.ctx.store.list_leads()
        return {"count": len(leads), "leads": leads}

    async def test_lead(self):
        lead = await self.ctx.store.get_lead_data(TEST_PHONE_NUMBER)
        if lead is None:
            return JSONResponse(status_code=404, content={"error": "Test lead not found"})
        return lead

    # =============================
    # Admin API
    # =============================
    async def list_leads(self):
        return await self.ctx.store.list_leads()

    async def create_lead(self, lead: LeadIn):
        lead_id = await self.ctx.store.add_lead(lead)
        if lead_id is None:
            return JSONResponse(status_code=400, content={"error": f"Invalid phone number: {lead.phone_number}"})
        return await self.ctx.store.get_lead_by_id(lead_id)

    async def update_lead(self, lead_id: int, update: LeadUpdate):
        try:
            lead = await self.ctx.store.update_lead(lead_id, update)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        if lead is None:
            return JSONResponse(status_code=404, content={"error": "Lead not found"})
        return lead

    async def delete_lead(self, lead_id: int):
        if not await self.ctx.store.delete_lead(lead_id):
            return JSONResponse(status_code=404, content={"error": "Lead not found"})
        return {"success": True}
