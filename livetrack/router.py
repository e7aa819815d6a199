# livetrack/router.py
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.websockets import WebSocketState

from .broadcast import Subscription, SubscriptionManager, SubscriptionState
from .config import TEMPLATES_DIR
from .history import HistoryStore
from .ingest import IngestError, IngestService, http_date_to_iso, parse_payload
from .models import Ack, History, LocationSample

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def get_store(request: Request) -> HistoryStore:
    return request.app.state.store


def get_ingest(request: Request) -> IngestService:
    return request.app.state.ingest


async def _collect(request: Request) -> dict:
    """Query params, overlaid with a JSON or form body."""
    d = dict(request.query_params)
    ct = request.headers.get("content-type", "")
    if ct.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        d.update(dict(form))
    elif request.method == "POST":
        body = await request.body()
        if body or ct.startswith("application/json"):
            d.update(parse_payload(body))
    return d


@router.api_route("/report", methods=["GET", "POST"], response_model=Ack)
async def report(request: Request):
    ingest = get_ingest(request)
    try:
        payload = await _collect(request)
        ingest.accept(payload, default_when=http_date_to_iso(request.headers.get("date")))
    except IngestError as e:
        raise HTTPException(400, e.reason)
    return Ack()


@router.get("/get/{identity}", response_model=History, response_model_exclude_none=True)
async def history(request: Request, identity: str, limit: Optional[int] = Query(None, ge=1)):
    return History(identity=identity, locations=get_store(request).get(identity, limit))


@router.get("/latest/{identity}", response_model=LocationSample, response_model_exclude_none=True)
async def latest(request: Request, identity: str):
    it = get_store(request).latest(identity)
    if it is None:
        return JSONResponse({"error": "no data"}, status_code=404)
    return it


@router.get("/api/health")
async def health(request: Request):
    store = get_store(request)
    return {
        "status": "healthy",
        "identities": len(store.identities()),
        "samples": len(store),
        **request.app.state.subscribers.stats(),
    }


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def viewer(request: Request, identity: Optional[str] = None, phone: Optional[str] = None):
    return templates.TemplateResponse(request, "viewer.html", {"identity": identity or phone or ""})


# -------------------------
# live channel
# -------------------------
Send = Callable[[dict], Awaitable[None]]


async def _pump(send: Send, sub: Subscription) -> SubscriptionState:
    """Drain the subscription into the socket until either side gives up."""
    async for sample in sub:
        try:
            await send(sample.to_wire())
        except WebSocketDisconnect:
            return SubscriptionState.DROPPED
        except (RuntimeError, OSError) as e:
            logger.warning("ws send failed subscription=%s: %s", sub.id, e)
            return SubscriptionState.FAILED
    return sub.reason or SubscriptionState.CLOSING


async def _listen(ws: WebSocket, send: Send, sub: Subscription) -> SubscriptionState:
    """Viewers only talk to us to ping; a disconnect ends the subscription."""
    try:
        while True:
            evt = await ws.receive()
            if evt["type"] == "websocket.disconnect":
                logger.debug("ws disconnect subscription=%s code=%s", sub.id, evt.get("code"))
                return SubscriptionState.DROPPED
            text = evt.get("text")
            if not text:
                continue
            try:
                msg = json.loads(text)
            except ValueError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await send({"type": "pong"})
    except WebSocketDisconnect:
        return SubscriptionState.DROPPED


def _outcome(done: set[asyncio.Task], sub: Subscription) -> SubscriptionState:
    reasons = []
    for task in done:
        if task.cancelled():
            continue
        if task.exception() is not None:
            logger.warning("ws subscription=%s aborted: %r", sub.id, task.exception())
            reasons.append(SubscriptionState.FAILED)
        else:
            reasons.append(task.result())
    # a peer that left outranks whatever the other side noticed
    for reason in (SubscriptionState.DROPPED, SubscriptionState.FAILED):
        if reason in reasons:
            return reason
    return reasons[0] if reasons else SubscriptionState.CLOSING


@router.websocket("/ws")
async def live(websocket: WebSocket, identity: Optional[str] = None):
    subscribers: SubscriptionManager = websocket.app.state.subscribers
    # registered before the handshake completes, so nothing published after
    # the client sees the connection open is missed
    sub = subscribers.subscribe(identity)
    reason = SubscriptionState.CLOSING
    write_lock = asyncio.Lock()

    async def send(data: dict) -> None:
        async with write_lock:
            await websocket.send_json(data)

    try:
        await websocket.accept()
        sub.activate()
        sender = asyncio.create_task(_pump(send, sub))
        receiver = asyncio.create_task(_listen(websocket, send, sub))
        try:
            done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sender.cancel()
            receiver.cancel()
        reason = _outcome(done, sub)
        if pending:
            await asyncio.wait(pending)
    finally:
        subscribers.unsubscribe(sub, reason)

    if websocket.client_state == WebSocketState.CONNECTED and reason is not SubscriptionState.DROPPED:
        # 1013: try again later, 1001: going away
        code = 1013 if sub.reason is SubscriptionState.FAILED else 1001
        try:
            await websocket.close(code=code)
        except RuntimeError:
            pass
