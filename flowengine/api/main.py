"""
flowengine/api/main.py
──────────────────────
FastAPI surface over the connection manager.

Authentication is handled in front of this service; the tenant id arrives
as a path parameter.
"""

from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse

from flowengine.api.schemas import ActionResponse, StatusResponse
from flowengine.config import settings
from flowengine.db.engine import dispose_engine
from flowengine.runtime import Runtime, get_runtime
from flowengine.whatsapp.status import ConnectionState
from flowengine.whatsapp.twilio_transport import TwilioSession, validate_signature

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Dispose the flow-store engine on shutdown."""
    yield
    await dispose_engine()


app = FastAPI(
    title="WhatsApp Flow Engine API",
    version="1.0.0",
    description="Per-tenant WhatsApp connection lifecycle and conversational flow execution",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],  # Vite/React dev servers
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
TERMINAL_STREAM_STATES = {
    ConnectionState.CONNECTED,
    ConnectionState.ERROR,
    ConnectionState.AUTH_FAILURE,
    ConnectionState.DISCONNECTED_LOGGED_OUT,
}


def runtime_dependency() -> Runtime:
    return get_runtime()


# ═══════════════════════════════════════════════════════════════════════════
# API ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/")
async def root():
    """Health check."""
    return {"status": "ok", "service": "WhatsApp Flow Engine API"}


@app.get("/api/v1/whatsapp/{tenant_id}/status", response_model=StatusResponse)
async def get_status(tenant_id: int, runtime: Runtime = Depends(runtime_dependency)):
    """Current connection status (includes the QR code while pairing)."""
    status = await runtime.connections.get_status(tenant_id)
    return StatusResponse.from_status(status)


@app.post("/api/v1/whatsapp/{tenant_id}/connect", response_model=ActionResponse, status_code=202)
async def connect(
    tenant_id: int,
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(runtime_dependency),
):
    """
    Start pairing / reconnecting in the background.
    Poll the status endpoint (or the stream) for the QR code.
    """
    background_tasks.add_task(runtime.connections.connect, tenant_id)
    return ActionResponse(message="Connecting...")


@app.post("/api/v1/whatsapp/{tenant_id}/disconnect", response_model=ActionResponse)
async def disconnect(tenant_id: int, runtime: Runtime = Depends(runtime_dependency)):
    await runtime.connections.disconnect(tenant_id)
    return ActionResponse(message="Disconnect requested.")


@app.get("/api/v1/whatsapp/{tenant_id}/status/stream")
async def stream_status(tenant_id: int, runtime: Runtime = Depends(runtime_dependency)):
    """
    Server-Sent Events with every status change, ending once pairing
    settles (connected, logged out or failed).
    """
    manager = runtime.connections

    async def event_generator():
        queue = manager.subscribe(tenant_id)
        try:
            current = await manager.get_status(tenant_id)
            yield f"data: {current.model_dump_json()}\n\n"
            if current.status in TERMINAL_STREAM_STATES:
                return

            while True:
                status = await queue.get()
                yield f"data: {status.model_dump_json()}\n\n"
                if status.status in TERMINAL_STREAM_STATES:
                    break
        finally:
            manager.unsubscribe(tenant_id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream"
    )


@app.post("/api/v1/whatsapp/{tenant_id}/webhook/twilio")
async def twilio_webhook(
    tenant_id: int,
    request: Request,
    runtime: Runtime = Depends(runtime_dependency),
):
    """Inbound WhatsApp message delivered by Twilio."""
    session = await runtime.connections.get_session(tenant_id)
    if not isinstance(session, TwilioSession):
        raise HTTPException(status_code=409, detail="No Twilio session for this tenant")

    form = dict(await request.form())
    url = str(request.url)
    if settings.twilio.webhook_base_url:
        url = settings.twilio.webhook_base_url.rstrip("/") + request.url.path
    if not validate_signature(session.auth_token, url, form, request.headers.get("X-Twilio-Signature")):
        logger.warning("Rejected Twilio webhook with bad signature – tenant=%s", tenant_id)
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        await session.receive_webhook(form)
    except Exception as exc:
        logger.error("Twilio webhook handling failed – tenant=%s: %s", tenant_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return Response(content=EMPTY_TWIML, media_type="application/xml")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "flowengine.api.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info"
    )
