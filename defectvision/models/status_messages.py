"""
Inspection and batch status dictionaries

Maps status codes to display text and front-end messages.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel

from defectvision.models.inspection import AnalysisResult, InspectionMetrics


class StatusMessage(BaseModel):
    """Status message model"""
    status_code: str
    status_text: str
    message: str
    severity: str  # info, warning, error, success


# Inspection verdicts
INSPECTION_STATUS_DICT: Dict[str, StatusMessage] = {
    "pass": StatusMessage(
        status_code="pass",
        status_text="Pass",
        message="Product meets quality standards",
        severity="success"
    ),
    "warning": StatusMessage(
        status_code="warning",
        status_text="Warning",
        message="Defects found, product still functional",
        severity="warning"
    ),
    "critical": StatusMessage(
        status_code="critical",
        status_text="Critical",
        message="Defects make the product unusable or unsafe",
        severity="error"
    ),
}


# Batch item states
BATCH_STATUS_DICT: Dict[str, StatusMessage] = {
    "pending": StatusMessage(
        status_code="pending",
        status_text="Pending",
        message="Waiting to be analyzed",
        severity="info"
    ),
    "analyzing": StatusMessage(
        status_code="analyzing",
        status_text="Analyzing",
        message="AI analyzing for defects...",
        severity="info"
    ),
    "complete": StatusMessage(
        status_code="complete",
        status_text="Complete",
        message="Analysis complete",
        severity="success"
    ),
    "error": StatusMessage(
        status_code="error",
        status_text="Error",
        message="Analysis failed",
        severity="error"
    ),
}


PASS_RATE_PLACEHOLDER = "—"


def get_status_message(status: str, table: Optional[Dict[str, StatusMessage]] = None) -> StatusMessage:
    """Look up a status, falling back to a generic entry for unknown codes."""
    table = INSPECTION_STATUS_DICT if table is None else table
    return table.get(
        status,
        StatusMessage(
            status_code=status,
            status_text="Unknown",
            message=f"Status: {status}",
            severity="info"
        )
    )


def generate_analysis_messages(result: AnalysisResult) -> List[str]:
    """
    Build the messages shown after a single analysis completes.

    Args:
        result: normalized analysis result

    Returns:
        list of messages
    """
    if result.overall_status == "pass":
        messages = ["No defects detected in this product."]
    else:
        messages = [f"Found {len(result.defects)} defect(s)."]

    critical = [d for d in result.defects if d.severity == "critical"]
    if critical:
        messages.append(f"{len(critical)} critical defect(s) require immediate attention")

    return messages


def format_pass_rate(pass_rate: Optional[float]) -> str:
    if pass_rate is None:
        return PASS_RATE_PLACEHOLDER
    return f"{pass_rate:.1f}%"


def get_metrics_response(metrics: InspectionMetrics) -> Dict:
    """
    Build the metric card payload for the dashboard.

    Args:
        metrics: current aggregation metrics

    Returns:
        dict with raw values plus display strings
    """
    return {
        "metrics": metrics.model_dump(by_alias=True),
        "display": {
            "totalInspections": str(metrics.total_inspections),
            "passRate": format_pass_rate(metrics.pass_rate),
            "totalDefects": str(metrics.total_defects),
            "criticalIssues": str(metrics.critical_issues),
        },
        "messages": ["No inspections yet"] if metrics.total_inspections == 0 else [],
    }
