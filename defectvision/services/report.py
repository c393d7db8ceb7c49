"""
HTML inspection reports.

``render_report`` is pure: it sanitizes whatever inspection data it is handed
(dicts from a request body or ``Inspection`` models), keeps within the size
limits and renders the Jinja2 template with autoescaping on, so AI-generated
text can never inject markup.
"""
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from defectvision.config import settings
from defectvision.models.inspection import (
    DEFAULT_DEFECT_LOCATION,
    DEFAULT_DEFECT_TYPE,
    clamp_number,
    coerce_severity,
    coerce_status,
)

REPORT_TYPES = ("single", "daily", "batch")
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)

STATUS_STYLES = {
    "pass": ("#dcfce7", "#166534"),
    "warning": ("#fef9c3", "#854d0e"),
    "critical": ("#fee2e2", "#991b1b"),
}
SEVERITY_STYLES = {
    "critical": ("#fee2e2", "#991b1b"),
    "high": ("#ffedd5", "#9a3412"),
    "medium": ("#fef9c3", "#854d0e"),
    "low": ("#f0fdf4", "#166534"),
}


def safe_string(value: Any, max_length: int = 200) -> str:
    if value is None:
        return ""
    return str(value)[:max_length]


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return None


def sanitize_defect(defect: Any) -> Optional[Dict[str, Any]]:
    d = _as_dict(defect)
    if d is None:
        return None
    return {
        "type": safe_string(d.get("type"), 100) or DEFAULT_DEFECT_TYPE,
        "severity": coerce_severity(d.get("severity")),
        "location": safe_string(d.get("location"), 200) or DEFAULT_DEFECT_LOCATION,
        "confidence": clamp_number(d.get("confidence"), 80),
    }


def sanitize_inspection(inspection: Any, max_defects: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """Normalize one inspection for rendering; returns None for non-object input."""
    i = _as_dict(inspection)
    if i is None:
        return None
    max_defects = max_defects or settings.report_max_defects

    defects: List[Dict[str, Any]] = []
    if isinstance(i.get("defects"), list):
        defects = [d for d in map(sanitize_defect, i["defects"][:max_defects]) if d is not None]

    return {
        "id": safe_string(i.get("id"), 50) or "Unknown",
        "productId": safe_string(i.get("productId"), 50) or "Unknown",
        "timestamp": safe_string(i.get("timestamp"), 50) or datetime.now().isoformat(),
        "status": coerce_status(i.get("status")),
        "defectsFound": int(clamp_number(i.get("defectsFound"), 0, 0, 1000)),
        "line": safe_string(i.get("line"), 50) or "Unknown",
        "defects": defects,
        "confidence": clamp_number(i.get("confidence"), 80),
    }


def sanitize_inspections(inspections: Iterable[Any], max_inspections: Optional[int] = None) -> List[Dict[str, Any]]:
    max_inspections = max_inspections or settings.report_max_inspections
    sanitized = [sanitize_inspection(i) for i in list(inspections)[:max_inspections]]
    return [i for i in sanitized if i is not None]


def validate_report_type(report_type: Any) -> str:
    return report_type if report_type in REPORT_TYPES else "single"


def suggest_report_type(count: int) -> str:
    return "single" if count == 1 else "daily"


def default_title(report_type: str, inspections: List[Dict[str, Any]]) -> str:
    if report_type == "single":
        first_id = inspections[0]["id"] if inspections else "Unknown"
        return f"Inspection Report - {first_id}"
    if report_type == "daily":
        return "Daily Quality Control Report"
    return "Batch Inspection Report"


def report_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"inspection-report-{today.isoformat()}.html"


def summarize(inspections: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = len(inspections)
    passed = sum(1 for i in inspections if i["status"] == "pass")
    return {
        "total_inspections": total,
        "pass_rate": f"{passed / total * 100:.1f}" if total > 0 else "0",
        "warning_count": sum(1 for i in inspections if i["status"] == "warning"),
        "critical_count": sum(1 for i in inspections if i["status"] == "critical"),
        "total_defects": sum(i["defectsFound"] for i in inspections),
    }


def render_report(
    inspections: Iterable[Any],
    report_type: Any = "single",
    title: Optional[str] = None,
    print_on_load: bool = False,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Render a standalone HTML report.

    Args:
        inspections: inspection dicts (wire format) or ``Inspection`` models
        report_type: single, daily or batch; anything else renders as single
        title: optional heading, defaults by report type
        print_on_load: add a hook that opens the print dialog once loaded
        generated_at: timestamp shown in the header

    Returns:
        the HTML document
    """
    records = sanitize_inspections(inspections)
    report_type = validate_report_type(report_type)
    generated_at = generated_at or datetime.now()
    template = _env.get_template("report.html")
    return template.render(
        title=safe_string(title, 200) if title else default_title(report_type, records),
        generated=generated_at.strftime("%B %d, %Y, %I:%M %p"),
        report_id=f"RPT-{int(time.time() * 1000)}",
        inspections=records,
        summary=summarize(records),
        status_styles=STATUS_STYLES,
        severity_styles=SEVERITY_STYLES,
        print_on_load=print_on_load,
    )
