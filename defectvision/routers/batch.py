import asyncio
from contextlib import asynccontextmanager
from typing import List

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile, status

from defectvision.logger import logger
from defectvision.models.inspection import AnalysisResult, InspectionDraft
from defectvision.models.status_messages import BATCH_STATUS_DICT, get_status_message
from defectvision.routers.analysis import get_analysis_client
from defectvision.routers.inspection import get_inspection_session
from defectvision.services.analysis import DefectAnalysisClient, to_data_url
from defectvision.services.auth import AuthenticatedUser, require_user
from defectvision.services.batch import BatchLockedError, BatchQueue, BatchRunSummary
from defectvision.services.inspection import InspectionSession

router = APIRouter(prefix="/batch", tags=["batch"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Batch queue lifecycle; an unfinished run is cancelled on shutdown."""
    app.state.batch_queue = BatchQueue()
    app.state.batch_task = None
    try:
        yield
    finally:
        task = app.state.batch_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def get_batch_queue(request: Request) -> BatchQueue:
    return request.app.state.batch_queue


def _queue_state(queue: BatchQueue) -> dict:
    state = queue.snapshot()
    for item in state["items"]:
        item["statusText"] = get_status_message(item["status"], BATCH_STATUS_DICT).status_text
    return state


@router.get("")
async def get_batch(
    user: AuthenticatedUser = Depends(require_user),
    queue: BatchQueue = Depends(get_batch_queue),
):
    return _queue_state(queue)


@router.post("/items")
async def add_batch_items(
    files: List[UploadFile] = File(...),
    user: AuthenticatedUser = Depends(require_user),
    queue: BatchQueue = Depends(get_batch_queue),
):
    """Queue uploaded images; files that are not images are skipped."""
    added = []
    skipped = []
    try:
        for upload in files:
            content_type = upload.content_type or ""
            if not content_type.startswith("image/"):
                skipped.append(upload.filename)
                continue
            data = await upload.read()
            added.append(queue.add(upload.filename or "image", to_data_url(data, content_type)).public())
    except BatchLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if skipped:
        logger.info(f"Skipped non-image uploads: {skipped}")
    return {"added": added, "skipped": skipped, **_queue_state(queue)}


@router.delete("/items/{item_id}")
async def remove_batch_item(
    item_id: str,
    user: AuthenticatedUser = Depends(require_user),
    queue: BatchQueue = Depends(get_batch_queue),
):
    try:
        queue.remove(item_id)
    except BatchLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Batch item {item_id} not found")
    return _queue_state(queue)


@router.delete("/items")
async def clear_batch(
    user: AuthenticatedUser = Depends(require_user),
    queue: BatchQueue = Depends(get_batch_queue),
):
    try:
        queue.clear()
    except BatchLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _queue_state(queue)


@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
async def run_batch(
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
    queue: BatchQueue = Depends(get_batch_queue),
    client: DefectAnalysisClient = Depends(get_analysis_client),
    session: InspectionSession = Depends(get_inspection_session),
):
    """
    Start analyzing every pending item in the background.

    Progress is read back through ``GET /batch``; each successful item is
    recorded as an inspection for the requesting user.
    """
    running = request.app.state.batch_task
    if queue.processing or (running is not None and not running.done()):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A batch run is in progress")
    if queue.pending_count == 0:
        raise HTTPException(status_code=400, detail="No pending images to analyze")

    def record(result: AnalysisResult) -> None:
        session.add_inspection(InspectionDraft.from_analysis(result), user.id)

    async def run() -> BatchRunSummary:
        summary = await queue.run(client.analyze, record)
        session.push_notice(
            "Batch Processing Complete",
            f"Analyzed {summary.succeeded} images successfully.",
        )
        return summary

    request.app.state.batch_task = asyncio.create_task(run())
    return _queue_state(queue)
