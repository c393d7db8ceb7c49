import asyncio
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from defectvision.config import settings
from defectvision.database import Base, engine
from defectvision.logger import logger
from defectvision.models.inspection import DBInspection  # noqa: F401  (registers the table)
from defectvision.models.status_messages import get_metrics_response
from defectvision.services.auth import AuthError, AuthenticatedUser, verify_token, require_user
from defectvision.services.feed import InspectionFeed
from defectvision.services.inspection import InspectionSession
from defectvision.services.store import InspectionStore, StoreError

router = APIRouter(prefix="/inspections", tags=["inspections"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Session lifecycle: seed from the store, follow the push feed, tear down on shutdown."""
    Base.metadata.create_all(bind=engine)
    store = InspectionStore()
    session = InspectionSession(writer=store.save, max_notices=settings.max_notices)

    watermark = 0
    try:
        records, watermark = store.load_recent()
        session.seed(records)
    except StoreError as e:
        logger.error(f"Could not load inspection history: {e}")

    feed = InspectionFeed(store, watermark=watermark)
    unsubscribe = feed.subscribe(session.merge)
    feed.start()

    app.state.inspection_store = store
    app.state.inspection_session = session
    app.state.inspection_feed = feed
    try:
        yield
    finally:
        unsubscribe()
        await feed.stop()


def get_inspection_session(request: Request) -> InspectionSession:
    return request.app.state.inspection_session


@router.get("")
async def list_inspections(
    user: AuthenticatedUser = Depends(require_user),
    session: InspectionSession = Depends(get_inspection_session),
):
    """Inspections (newest first), metrics, defect distribution and pending notices."""
    return session.snapshot()


@router.get("/metrics")
async def get_metrics(
    user: AuthenticatedUser = Depends(require_user),
    session: InspectionSession = Depends(get_inspection_session),
):
    return get_metrics_response(session.metrics)


@router.delete("")
async def clear_inspections(
    user: AuthenticatedUser = Depends(require_user),
    session: InspectionSession = Depends(get_inspection_session),
):
    cleared = len(session)
    session.clear_inspections()
    return {"status": "success", "cleared": cleared}


@router.delete("/notices/{notice_id}")
async def dismiss_notice(
    notice_id: str,
    user: AuthenticatedUser = Depends(require_user),
    session: InspectionSession = Depends(get_inspection_session),
):
    if not session.dismiss_notice(notice_id):
        raise HTTPException(status_code=404, detail=f"Notice {notice_id} not found")
    return {"status": "success"}


@router.websocket("/feed")
async def websocket_inspection_feed(websocket: WebSocket):
    """
    Live dashboard state over WebSocket: /inspections/feed?token=xxx

    Sends a snapshot on connect and again whenever the session changes.
    Browsers cannot set headers on WebSocket requests, so the bearer token
    travels as a query parameter.
    """
    token = websocket.query_params.get("token")
    try:
        verify_token(token or "")
    except AuthError:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    session: InspectionSession = websocket.app.state.inspection_session
    sent_version = None
    try:
        while True:
            if session.version != sent_version:
                sent_version = session.version
                await websocket.send_json(session.snapshot())
            try:
                # Client messages are ignored; waiting on them surfaces disconnects
                await asyncio.wait_for(websocket.receive_text(), timeout=settings.feed_poll_interval)
            except asyncio.TimeoutError:
                pass
    except WebSocketDisconnect:
        logger.info(f"Inspection feed connection closed: {websocket.client}")
