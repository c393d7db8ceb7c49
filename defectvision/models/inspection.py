"""Inspection data models.

Pydantic models describe defects, analysis results and inspection records as
the dashboard sees them; ``DBInspection`` is the persisted row. Every boundary
that accepts a confidence or a severity goes through the validators here, so
out-of-range values never reach the aggregation model or the report.
"""

import math
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column, DateTime, Float, Integer, String

from defectvision.database import Base

Status = Literal["pass", "warning", "critical"]
Severity = Literal["low", "medium", "high", "critical"]

STATUSES = ("pass", "warning", "critical")
SEVERITIES = ("low", "medium", "high", "critical")

DEFAULT_STATUS = "warning"
DEFAULT_SEVERITY = "medium"
DEFAULT_RESULT_CONFIDENCE = 85.0
DEFAULT_DEFECT_CONFIDENCE = 80.0
DEFAULT_DEFECT_TYPE = "Unknown Defect"
DEFAULT_DEFECT_LOCATION = "Unknown location"


def clamp_number(value: Any, default: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp ``value`` into [low, high]; missing or non-numeric input yields ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(high, max(low, number))


def coerce_status(value: Any) -> str:
    return value if value in STATUSES else DEFAULT_STATUS


def coerce_severity(value: Any) -> str:
    return value if value in SEVERITIES else DEFAULT_SEVERITY


def truncate_text(value: Any, max_length: int, default: str) -> str:
    if value is None:
        return default
    text = str(value)[:max_length]
    return text or default


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Defect(CamelModel):
    type: str = DEFAULT_DEFECT_TYPE
    severity: Severity = DEFAULT_SEVERITY
    location: str = DEFAULT_DEFECT_LOCATION
    confidence: float = DEFAULT_DEFECT_CONFIDENCE

    @field_validator("type", mode="before")
    @classmethod
    def _truncate_type(cls, value):
        return truncate_text(value, 100, DEFAULT_DEFECT_TYPE)

    @field_validator("location", mode="before")
    @classmethod
    def _truncate_location(cls, value):
        return truncate_text(value, 200, DEFAULT_DEFECT_LOCATION)

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value):
        return coerce_severity(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_number(value, DEFAULT_DEFECT_CONFIDENCE)


class AnalyzedDefect(Defect):
    """A defect exactly as the vision model reported it, including its description."""
    description: str = "No description provided"

    @field_validator("description", mode="before")
    @classmethod
    def _truncate_description(cls, value):
        return truncate_text(value, 500, "No description provided")


class AnalysisResult(BaseModel):
    """Normalized response of the vision model for one image."""
    overall_status: Status = DEFAULT_STATUS
    confidence: float = DEFAULT_RESULT_CONFIDENCE
    defects: List[AnalyzedDefect] = Field(default_factory=list)

    @field_validator("overall_status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        return coerce_status(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_number(value, DEFAULT_RESULT_CONFIDENCE)

    @field_validator("defects", mode="before")
    @classmethod
    def _drop_malformed_defects(cls, value):
        if not isinstance(value, list):
            return []
        return [d for d in value if isinstance(d, (dict, AnalyzedDefect))]


class InspectionDraft(CamelModel):
    """An analysis outcome that has not been given an identity yet."""
    status: Status
    confidence: float
    defects_found: int
    defects: List[Defect] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp_number(value, DEFAULT_RESULT_CONFIDENCE)

    @classmethod
    def from_analysis(cls, result: AnalysisResult) -> "InspectionDraft":
        defects = [
            Defect(type=d.type, severity=d.severity, location=d.location, confidence=d.confidence)
            for d in result.defects
        ]
        return cls(
            status=result.overall_status,
            confidence=result.confidence,
            defects_found=len(defects),
            defects=defects,
        )


class Inspection(InspectionDraft):
    id: str
    product_id: str
    line: str
    timestamp: str


class InspectionMetrics(CamelModel):
    total_inspections: int
    pass_rate: Optional[float]
    total_defects: int
    critical_issues: int


class DistributionSlice(BaseModel):
    name: str
    value: int
    color: str


class Notice(BaseModel):
    """A dismissible message shown to the user."""
    id: str
    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


class AnalyzeRequest(CamelModel):
    image_base64: Any = None


def format_timestamp(moment: datetime) -> str:
    """Render a moment the way the dashboard lists it, e.g. ``02:05:09 PM``."""
    return moment.strftime("%I:%M:%S %p")


# SQLAlchemy model for the remote store
class DBInspection(Base):
    __tablename__ = "inspections"

    id = Column(Integer, primary_key=True, autoincrement=True)  # feed watermark
    inspection_id = Column(String(64), unique=True, index=True, nullable=False)
    product_id = Column(String(64), nullable=False)
    production_line = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    defects_found = Column(Integer, nullable=False, default=0)
    confidence = Column(Float, nullable=False, default=0.0)
    defects = Column(JSON, nullable=False, default=list)
    user_id = Column(String(64), index=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def to_inspection(self) -> Inspection:
        return Inspection(
            id=self.inspection_id,
            product_id=self.product_id,
            line=self.production_line,
            timestamp=format_timestamp(self.created_at or datetime.now()),
            status=coerce_status(self.status),
            defects_found=self.defects_found or 0,
            confidence=self.confidence,
            defects=[d for d in (self.defects or []) if isinstance(d, dict)],
        )

    @classmethod
    def from_inspection(cls, inspection: Inspection, user_id: str) -> "DBInspection":
        return cls(
            inspection_id=inspection.id,
            product_id=inspection.product_id,
            production_line=inspection.line,
            status=inspection.status,
            defects_found=inspection.defects_found,
            confidence=inspection.confidence,
            defects=[d.model_dump() for d in inspection.defects],
            user_id=user_id,
        )
