from typing import Any, Dict, List, Literal, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from defectvision.logger import logger
from defectvision.models.report import ReportRequest, ReportResponse
from defectvision.routers.inspection import get_inspection_session
from defectvision.services.auth import AuthenticatedUser, require_user
from defectvision.services.inspection import InspectionSession
from defectvision.services.report import (
    render_report,
    report_filename,
    sanitize_inspections,
    suggest_report_type,
    validate_report_type,
)

router = APIRouter(prefix="/reports", tags=["reports"])


def _checked_records(inspections: Any) -> List[Dict[str, Any]]:
    if not isinstance(inspections, list):
        raise HTTPException(status_code=400, detail="inspections must be an array")
    if not inspections:
        raise HTTPException(status_code=400, detail="No inspections provided")
    records = sanitize_inspections(inspections)
    if not records:
        raise HTTPException(status_code=400, detail="No valid inspections found in request")
    return records


def _render(body: ReportRequest, print_on_load: bool = False) -> Tuple[str, str]:
    records = _checked_records(body.inspections)
    report_type = validate_report_type(body.report_type)
    html = render_report(records, report_type, body.title, print_on_load=print_on_load)
    logger.info(f"Generated {report_type} report for {len(records)} inspection(s)")
    return html, report_type


def _download(html: str) -> HTMLResponse:
    return HTMLResponse(
        content=html,
        headers={"Content-Disposition": f'attachment; filename="{report_filename()}"'},
    )


@router.post("", response_model=ReportResponse)
async def generate_report(body: ReportRequest, user: AuthenticatedUser = Depends(require_user)):
    """
    Render an HTML report from the posted inspections.

    Args:
        body: ``{"inspections": [...], "reportType": "single|daily|batch", "title": "..."}``

    Returns:
        ``{"html": "...", "reportType": "..."}``
    """
    html, report_type = _render(body)
    return ReportResponse(html=html, report_type=report_type)


@router.post("/download")
async def download_report(body: ReportRequest, user: AuthenticatedUser = Depends(require_user)):
    html, _ = _render(body)
    return _download(html)


@router.post("/print")
async def print_report(body: ReportRequest, user: AuthenticatedUser = Depends(require_user)):
    """Same document, opened inline with a hook that starts the print dialog."""
    html, _ = _render(body, print_on_load=True)
    return HTMLResponse(content=html)


@router.get("/session")
async def session_report(
    action: Literal["download", "print"] = "download",
    user: AuthenticatedUser = Depends(require_user),
    session: InspectionSession = Depends(get_inspection_session),
):
    """Report over the current session: one inspection is a single report, more are daily."""
    inspections = session.inspections
    if not inspections:
        raise HTTPException(
            status_code=400,
            detail="No inspections: Analyze some images first to generate a report.",
        )
    report_type = suggest_report_type(len(inspections))
    html = render_report(inspections, report_type, print_on_load=action == "print")
    return _download(html) if action == "download" else HTMLResponse(content=html)
