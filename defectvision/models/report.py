from typing import Any, Literal, Optional

from defectvision.models.inspection import CamelModel


class ReportRequest(CamelModel):
    """Report input. Fields stay loosely typed; the renderer sanitizes them."""
    inspections: Any = None
    report_type: Any = None
    title: Optional[str] = None


class ReportResponse(CamelModel):
    html: str
    report_type: Literal["single", "daily", "batch"]
