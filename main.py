"""
PepAI Drill Studio API

FastAPI backend that:
1. Generates and refines drills with Claude (one-shot or streamed)
2. Renders drill diagrams to SVG/PNG for export
3. Stores drill history and shared sessions in Supabase
4. Gates paid actions on the coach's billing profile
5. Receives payment-provider webhooks that grant credits and plans
6. Bridges live voice sessions between the browser and Gemini Live
"""

import asyncio
import json
import logging
from functools import lru_cache
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from fastapi import Body, Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from pepai.billing import BillingGate, Capability, Currency
from pepai.compression import decompress_session
from pepai.config import Settings, configure_logging
from pepai.errors import (
    BillingError,
    ConfigurationError,
    InvalidDrillError,
    MalformedResponseError,
    NotAuthenticatedError,
    PepAIError,
    public_message,
)
from pepai.generator import (
    Done,
    DrillGenerator,
    Failed,
    Progress,
    Retrying,
    StreamEvent,
    collect,
    validate_prompt,
)
from pepai.normalizer import normalize_drill, normalize_response
from pepai.renderer import SUPPORTED_FORMATS, render_drill
from pepai.schema import Drill, Session
from pepai.store import DrillStore
from pepai.voice import GeminiLiveTransport, LiveTransport, VoiceBridge
from pepai.webhooks import handle_payment_success, handle_subscription_change

logger = logging.getLogger("pepai")

VERSION = "1.0.0"


# ============================================================
# SETTINGS & DEPENDENCIES
# ============================================================

@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache()
def _generator(api_key: Optional[str], model: str, max_prompt_length: int) -> DrillGenerator:
    return DrillGenerator(api_key=api_key, model=model, max_prompt_length=max_prompt_length)


@lru_cache()
def _store(url: str, key: str, public_url: str) -> DrillStore:
    return DrillStore.from_settings(Settings(supabase_url=url, supabase_key=key, public_url=public_url))


def get_generator(settings: Settings = Depends(get_settings)) -> DrillGenerator:
    return _generator(settings.anthropic_api_key, settings.model, settings.max_prompt_length)


def get_optional_store(settings: Settings = Depends(get_settings)) -> Optional[DrillStore]:
    if not settings.supabase_url or not settings.supabase_key:
        return None
    return _store(settings.supabase_url, settings.supabase_key, settings.public_url)


def get_store(store: Optional[DrillStore] = Depends(get_optional_store)) -> DrillStore:
    if store is None:
        raise ConfigurationError(
            "SUPABASE_URL and SUPABASE_KEY must be set",
            user_message="The drill library is not configured on this server.",
        )
    return store


def get_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> Optional[str]:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


async def charge_action(user_id: Optional[str], currency: Currency, store: Optional[DrillStore]) -> None:
    """Charge a signed-in coach for one AI action; anonymous requests are free"""
    if user_id is None:
        return
    if store is None:
        raise ConfigurationError("Billing needs SUPABASE_URL and SUPABASE_KEY")
    await run_in_threadpool(BillingGate(store).check_and_deduct, user_id, currency)


# ============================================================
# FASTAPI APP SETUP
# ============================================================

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title="PepAI Drill Studio API",
    description="Generate, edit and share soccer training drills with AI",
    version=VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PepAIError)
async def pepai_error_handler(request: Request, exc: PepAIError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    content: Dict[str, Any] = {"error": public_message(exc, get_settings().dev_mode)}
    if isinstance(exc, BillingError):
        content["redirect"] = exc.redirect
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": public_message(exc, get_settings().dev_mode)})


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================

class HealthResponse(BaseModel):
    status: str
    version: str


class GenerateRequest(BaseModel):
    """Coach prompt; validated by the generator so errors read the same everywhere"""
    prompt: Optional[str] = None
    currency: Currency = Currency.CREDITS


class RefineRequest(BaseModel):
    drill: Dict[str, Any]
    instruction: Optional[str] = None
    currency: Currency = Currency.CREDITS


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(alias="priceId")
    mode: str = Field(default="subscription", pattern="^(subscription|payment)$")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class UserRequest(BaseModel):
    email: Optional[str] = None


def parse_drill(data: Dict[str, Any]) -> Drill:
    """Drill from a client payload, reconciled like model output"""
    try:
        return normalize_drill(data)
    except MalformedResponseError as e:
        raise InvalidDrillError(str(e)) from e


def parse_session(data: Dict[str, Any]) -> Session:
    data = dict(data)
    data["drills"] = [parse_drill(d).to_dict() for d in data.get("drills") or [] if isinstance(d, dict)]
    try:
        return Session.model_validate(data)
    except ValidationError as e:
        raise InvalidDrillError(f"Session failed schema validation: {e}", user_message="Invalid session.") from e



# ============================================================
# STREAMING
# ============================================================

def event_payload(event: StreamEvent, drill: Optional[Drill] = None) -> dict:
    """One NDJSON line for a stream event"""
    if isinstance(event, Progress):
        payload = {"event": "progress", "text": event.text}
    elif isinstance(event, Retrying):
        payload = {"event": "retrying", "attempt": event.attempt, "delay": round(event.delay, 3)}
    elif isinstance(event, Done):
        payload = {"event": "done"}
    else:
        return {"event": "failed", "error": event.message}
    if drill is not None:
        payload["drill"] = drill.to_dict()
    return payload


async def with_final_drill(events: AsyncIterator[StreamEvent]) -> AsyncIterator[Tuple[StreamEvent, Optional[Drill]]]:
    async for event in events:
        yield event, normalize_drill(event.text) if isinstance(event, Done) else None


async def ndjson(pairs: AsyncIterator[Tuple[StreamEvent, Optional[Drill]]], dev_mode: bool) -> AsyncIterator[str]:
    try:
        async for event, drill in pairs:
            yield json.dumps(event_payload(event, drill)) + "\n"
    except PepAIError as e:
        logger.warning("Stream failed: %s", e)
        failed = Failed(error=e, message=public_message(e, dev_mode))
        yield json.dumps(event_payload(failed)) + "\n"


# ============================================================
# API ENDPOINTS
# ============================================================

@app.get("/", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(status="healthy", version=VERSION)


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint"""
    return HealthResponse(status="healthy", version=VERSION)


@app.post("/api/drills")
async def generate_drills(
    request: GenerateRequest,
    user_id: Optional[str] = Depends(get_user_id),
    store: Optional[DrillStore] = Depends(get_optional_store),
    generator: DrillGenerator = Depends(get_generator),
):
    """
    Generate a drill from a natural language description.

    Returns ``{drill}`` (or ``{drills}`` if the model returned several).
    """
    events = generator.stream_generate(request.prompt)
    await charge_action(user_id, request.currency, store)

    logger.info("Generating drill: %s", (request.prompt or "")[:100])
    result = normalize_response(await collect(events))
    return result.to_dict()


@app.post("/api/drills/stream")
async def stream_drill(
    request: GenerateRequest,
    user_id: Optional[str] = Depends(get_user_id),
    settings: Settings = Depends(get_settings),
    store: Optional[DrillStore] = Depends(get_optional_store),
    generator: DrillGenerator = Depends(get_generator),
):
    """Stream a new drill as NDJSON events"""
    events = generator.stream_generate(request.prompt)
    await charge_action(user_id, request.currency, store)
    return StreamingResponse(
        ndjson(with_final_drill(events), settings.dev_mode),
        media_type="application/x-ndjson",
    )


@app.post("/api/drills/refine")
async def refine_drill(
    request: RefineRequest,
    user_id: Optional[str] = Depends(get_user_id),
    settings: Settings = Depends(get_settings),
    store: Optional[DrillStore] = Depends(get_optional_store),
    generator: DrillGenerator = Depends(get_generator),
):
    """Stream a refined drill; progress lines carry a preview once it parses"""
    drill = parse_drill(request.drill)
    validate_prompt(request.instruction, generator.max_prompt_length)
    await charge_action(user_id, request.currency, store)
    return StreamingResponse(
        ndjson(generator.refine_with_preview(drill, request.instruction), settings.dev_mode),
        media_type="application/x-ndjson",
    )


@app.post("/api/render-drill")
def render_existing_drill(
    drill_json: Dict[str, Any] = Body(...),
    format: str = Query(default="svg"),
    user_id: Optional[str] = Depends(get_user_id),
    store: Optional[DrillStore] = Depends(get_optional_store),
):
    """
    Render a drill diagram for export.

    Signed-in coaches need the export capability.
    """
    fmt = format.lower()
    if fmt not in SUPPORTED_FORMATS:
        return JSONResponse(status_code=400, content={"error": f"Unsupported format: {format}"})
    if user_id is not None:
        BillingGate(get_store(store)).require_capability(user_id, Capability.EXPORT)

    drill = parse_drill(drill_json)
    image = render_drill(drill, fmt=fmt)
    media_type = "image/svg+xml" if fmt == "svg" else "image/png"
    logger.info("Rendered drill %s as %s (%d bytes)", drill.id, fmt, len(image))
    return Response(content=image, media_type=media_type)


# ------------------------------------------------------------
# Users, history and billing profile
# ------------------------------------------------------------

def _require_same_user(uid: str, user_id: Optional[str]) -> None:
    if user_id is None:
        raise NotAuthenticatedError("No user id on request")
    if user_id != uid:
        raise NotAuthenticatedError(f"User {user_id} cannot act for {uid}")


@app.post("/api/users/{uid}")
def ensure_user(uid: str, request: Optional[UserRequest] = None,
                user_id: Optional[str] = Depends(get_user_id), store: DrillStore = Depends(get_store)):
    _require_same_user(uid, user_id)
    store.ensure_user_exists(uid, request.email if request else None)
    return {"id": uid}


@app.get("/api/users/{uid}/drills")
def list_drills(uid: str, user_id: Optional[str] = Depends(get_user_id), store: DrillStore = Depends(get_store)):
    _require_same_user(uid, user_id)
    return {"drills": [d.to_dict() for d in store.get_user_drills(uid)]}


@app.post("/api/users/{uid}/drills")
def save_drill(uid: str, drill_json: Dict[str, Any] = Body(...),
               user_id: Optional[str] = Depends(get_user_id), store: DrillStore = Depends(get_store)):
    _require_same_user(uid, user_id)
    BillingGate(store).require_capability(uid, Capability.SAVE)
    return {"id": store.save_drill(uid, parse_drill(drill_json))}


@app.post("/api/users/{uid}/drills/batch")
def save_drills(uid: str, drills_json: List[Dict[str, Any]] = Body(...),
                user_id: Optional[str] = Depends(get_user_id), store: DrillStore = Depends(get_store)):
    _require_same_user(uid, user_id)
    BillingGate(store).require_capability(uid, Capability.SAVE)
    return {"ids": store.save_drills(uid, [parse_drill(d) for d in drills_json])}


@app.get("/api/users/{uid}/billing")
def billing_profile(uid: str, user_id: Optional[str] = Depends(get_user_id), store: DrillStore = Depends(get_store)):
    _require_same_user(uid, user_id)
    return store.get_profile(uid).to_dict()


# ------------------------------------------------------------
# Sharing
# ------------------------------------------------------------

@app.post("/api/sessions/share")
def share_session(session_json: Dict[str, Any] = Body(...), store: DrillStore = Depends(get_store)):
    share_id = store.share_session(parse_session(session_json))
    return {"id": share_id, "url": store.share_url(share_id)}


@app.get("/api/share")
def get_shared_session(
    id: Optional[str] = Query(default=None),
    data: Optional[str] = Query(default=None),
    store: Optional[DrillStore] = Depends(get_optional_store),
):
    """Load a shared session by short id, or from a legacy ``data`` link"""
    if id:
        return get_store(store).get_shared_session(id).to_dict()
    if data:
        session = decompress_session(data)
        if session is None:
            return JSONResponse(status_code=400, content={"error": "Invalid share link."})
        return session.to_dict()
    return JSONResponse(status_code=400, content={"error": "No session data provided."})


# ------------------------------------------------------------
# Pricing & checkout
# ------------------------------------------------------------

@app.get("/api/pricing")
def pricing(store: DrillStore = Depends(get_store)):
    return {"products": store.get_active_products_with_prices()}


@app.post("/api/checkout")
def checkout(request: CheckoutRequest, user_id: Optional[str] = Depends(get_user_id),
             store: DrillStore = Depends(get_store)):
    uid = BillingGate.require_user(user_id)
    url = store.create_checkout_session(
        uid, request.price_id, mode=request.mode, metadata=request.metadata, return_url=request.return_url
    )
    return {"url": url}


# ------------------------------------------------------------
# Payment-provider webhooks
# ------------------------------------------------------------

def verify_webhook(
    x_webhook_secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.webhook_secret:
        raise ConfigurationError("PEPAI_WEBHOOK_SECRET is not configured")
    if x_webhook_secret != settings.webhook_secret:
        raise NotAuthenticatedError("Bad webhook secret", user_message="Invalid webhook signature.")


def _grant_response(grant) -> dict:
    return grant.to_dict() if grant else {"success": False}


@app.post("/hooks/subscriptions/{uid}/{sub_id}", dependencies=[Depends(verify_webhook)])
def subscription_written(uid: str, sub_id: str, record: Optional[Dict[str, Any]] = Body(default=None),
                         store: DrillStore = Depends(get_store)):
    """Subscription row written; the body is the row, or empty to load it"""
    if record is None:
        record = store.get_subscription(uid, sub_id)
    return _grant_response(handle_subscription_change(store, uid, sub_id, record))


@app.post("/hooks/payments/{uid}/{pay_id}", dependencies=[Depends(verify_webhook)])
def payment_created(uid: str, pay_id: str, record: Optional[Dict[str, Any]] = Body(default=None),
                    store: DrillStore = Depends(get_store)):
    """Payment row created; the body is the row, or empty to load it"""
    if record is None:
        record = store.get_payment(uid, pay_id)
    return _grant_response(handle_payment_success(store, uid, pay_id, record))


# ------------------------------------------------------------
# Voice assistant
# ------------------------------------------------------------

LiveConnector = Callable[[Drill], Awaitable[LiveTransport]]


def get_voice_connector(settings: Settings = Depends(get_settings)) -> LiveConnector:
    async def connect(drill: Drill) -> LiveTransport:
        return await GeminiLiveTransport.connect(drill, settings.gemini_api_key, settings.live_model)
    return connect


class SocketAudio:
    """Microphone and speaker for a voice bridge, fed by the client's WebSocket"""

    def __init__(self):
        self.mic: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self.outgoing: "asyncio.Queue[Union[bytes, dict, None]]" = asyncio.Queue()
        self.closed = False

    async def read(self) -> Optional[bytes]:
        if self.closed:
            return None
        return await self.mic.get()

    def play(self, pcm: bytes) -> None:
        self.outgoing.put_nowait(pcm)

    def interrupt(self) -> None:
        self.outgoing.put_nowait({"event": "interrupted"})

    def transcript(self, text: str) -> None:
        self.outgoing.put_nowait({"event": "transcript", "text": text})

    def send_drill(self, drill: Drill) -> None:
        self.outgoing.put_nowait({"event": "drill", "drill": drill.to_dict()})

    def close(self) -> None:
        self.closed = True
        self.mic.put_nowait(None)


async def read_voice_client(websocket: WebSocket, audio: SocketAudio, bridge: VoiceBridge, dev_mode: bool):
    try:
        while not bridge.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("bytes") is not None:
                audio.mic.put_nowait(message["bytes"])
                continue
            try:
                data = json.loads(message.get("text") or "{}")
                if not isinstance(data, dict):
                    raise InvalidDrillError("Voice message is not an object", user_message="Invalid message.")
                if data.get("stop"):
                    return
                if "drill" in data:
                    bridge.inbox.put_nowait(parse_drill(data["drill"]))
                if "text" in data:
                    # null sends the transcript as heard
                    text = data["text"]
                    await bridge.send_transcript(None if text is None else str(text))
            except (ValueError, PepAIError) as e:
                logger.info("Rejected voice message: %s", e)
                audio.outgoing.put_nowait({"event": "error", "error": public_message(e, dev_mode)})
    finally:
        await bridge.close()


async def relay_voice_updates(bridge: VoiceBridge, audio: SocketAudio):
    while True:
        audio.send_drill(await bridge.outbox.get())


async def write_voice_client(websocket: WebSocket, audio: SocketAudio):
    try:
        while True:
            item = await audio.outgoing.get()
            if item is None:
                return
            if isinstance(item, bytes):
                await websocket.send_bytes(item)
            else:
                await websocket.send_json(item)
    except WebSocketDisconnect:
        logger.info("Voice client disconnected")


@app.websocket("/ws/voice")
async def voice_session(
    websocket: WebSocket,
    currency: Currency = Query(default=Currency.CREDITS),
    user_id: Optional[str] = Depends(get_user_id),
    settings: Settings = Depends(get_settings),
    store: Optional[DrillStore] = Depends(get_optional_store),
    connect: LiveConnector = Depends(get_voice_connector),
):
    """
    Live voice coaching on one drill, charged as one AI action.

    The first client frame is ``{"drill": {...}}``. After that, binary
    frames are 16 kHz microphone PCM, ``{"drill": ...}`` hands over the
    editor's latest snapshot, ``{"text": ...}`` sends an edited transcript
    and ``{"stop": true}`` ends the session. The server answers with 24 kHz
    PCM binary frames and JSON events (``transcript``, ``drill``,
    ``interrupted``, ``error``), ending with ``closed``.
    """
    await websocket.accept()
    try:
        start = await websocket.receive_json()
        drill = parse_drill(start.get("drill") if isinstance(start, dict) else None)
        transport = await connect(drill)
        try:
            await charge_action(user_id, currency, store)
        except PepAIError:
            await transport.close()
            raise
    except (ValueError, PepAIError) as e:
        logger.info("Voice session refused: %s", e)
        await websocket.send_json({"event": "error", "error": public_message(e, settings.dev_mode)})
        await websocket.close(code=1008)
        return

    audio = SocketAudio()
    bridge = VoiceBridge(transport, drill, source=audio, sink=audio, on_transcript=audio.transcript)
    writer = asyncio.ensure_future(write_voice_client(websocket, audio))
    helpers = [
        asyncio.ensure_future(read_voice_client(websocket, audio, bridge, settings.dev_mode)),
        asyncio.ensure_future(relay_voice_updates(bridge, audio)),
    ]
    logger.info("Voice session started on drill %s", drill.id)
    try:
        await bridge.run()
    finally:
        for task in helpers:
            task.cancel()
        for result in await asyncio.gather(*helpers, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error("Voice session task failed: %s", result)
        while not bridge.outbox.empty():
            audio.send_drill(bridge.outbox.get_nowait())
        audio.outgoing.put_nowait({"event": "closed"})
        audio.outgoing.put_nowait(None)
        await writer
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()


# ============================================================
# RUN SERVER
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
