from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request

from defectvision.logger import logger
from defectvision.models.inspection import AnalyzeRequest, InspectionDraft
from defectvision.models.status_messages import generate_analysis_messages, get_status_message
from defectvision.routers.inspection import get_inspection_session
from defectvision.services.analysis import AnalysisError, DefectAnalysisClient, ImageValidationError
from defectvision.services.auth import AuthenticatedUser, require_user
from defectvision.services.inspection import InspectionSession

router = APIRouter(prefix="/analysis", tags=["analysis"])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Analysis client lifecycle"""
    client = DefectAnalysisClient()
    app.state.analysis_client = client
    try:
        yield
    finally:
        await client.aclose()
        logger.info("Analysis client closed")


def get_analysis_client(request: Request) -> DefectAnalysisClient:
    return request.app.state.analysis_client


@router.post("")
async def analyze_image(
    body: AnalyzeRequest,
    user: AuthenticatedUser = Depends(require_user),
    client: DefectAnalysisClient = Depends(get_analysis_client),
    session: InspectionSession = Depends(get_inspection_session),
):
    """
    Analyze one product image and record the inspection.

    Args:
        body: ``{"imageBase64": "data:image/png;base64,..."}``

    Returns:
        the analysis result, the recorded inspection and user-facing messages
    """
    try:
        result = await client.analyze(body.image_base64)
    except ImageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    inspection = session.add_inspection(InspectionDraft.from_analysis(result), user.id)
    return {
        "result": result.model_dump(),
        "inspection": inspection.model_dump(by_alias=True),
        "status": get_status_message(result.overall_status).model_dump(),
        "messages": generate_analysis_messages(result),
        "notices": [notice.model_dump() for notice in session.notices],
    }
