"""
Inspection aggregation for one dashboard session.

The session owns the in-memory inspection list and derives the dashboard
metrics from it. Two producers write into the list: ``add_inspection`` for
results analyzed locally and ``merge`` for rows observed on the push feed.
Both go through the same keyed append-if-absent, so a local insert and its
echo from the store collapse into one record.
"""

import random
import time
import uuid
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional

from defectvision.logger import logger
from defectvision.models.inspection import (
    DistributionSlice,
    Inspection,
    InspectionDraft,
    InspectionMetrics,
    Notice,
    format_timestamp,
)
from defectvision.services.store import AuthenticationRequiredError, StoreError

# Chart colours per defect type
DEFECT_COLORS: Dict[str, str] = {
    # Surface defects
    "Surface Scratch": "hsl(38, 92%, 50%)",
    "Surface Defect": "hsl(38, 92%, 50%)",
    "Scratch": "hsl(38, 92%, 50%)",
    "Dent": "hsl(35, 85%, 45%)",
    "Pitting": "hsl(32, 80%, 48%)",
    "Abrasion": "hsl(40, 88%, 52%)",
    # Structural defects
    "Structural Defect": "hsl(0, 72%, 51%)",
    "Crack": "hsl(0, 72%, 51%)",
    "Fracture": "hsl(5, 75%, 48%)",
    "Deformation": "hsl(10, 70%, 50%)",
    "Warping": "hsl(15, 68%, 52%)",
    # Dimensional issues
    "Dimensional Issue": "hsl(185, 85%, 50%)",
    "Dimensional Problem": "hsl(185, 85%, 50%)",
    "Misalignment": "hsl(190, 80%, 48%)",
    "Size Irregularity": "hsl(180, 75%, 45%)",
    # Colour and coating
    "Color Variation": "hsl(280, 70%, 55%)",
    "Coating Issue": "hsl(285, 65%, 52%)",
    "Discoloration": "hsl(275, 72%, 50%)",
    "Stain": "hsl(270, 68%, 48%)",
    # Contamination
    "Contamination": "hsl(120, 60%, 40%)",
    "Foreign Particle": "hsl(125, 55%, 42%)",
    "Debris": "hsl(115, 58%, 38%)",
    # Assembly defects
    "Assembly Defect": "hsl(200, 70%, 50%)",
    "Missing Part": "hsl(205, 65%, 48%)",
    "Improper Assembly": "hsl(195, 72%, 52%)",
    # Edges
    "Edge Irregularity": "hsl(45, 85%, 50%)",
    "Edge Defect": "hsl(48, 82%, 48%)",
}
DEFAULT_DEFECT_COLOR = "hsl(220, 70%, 50%)"

PRODUCT_LINES = ["Line A", "Line B", "Line C", "Line D"]
PRODUCT_PREFIXES = ["PRD", "CMP", "ASM"]
MINOR_SEVERITIES = ("low", "medium")

Writer = Callable[[Inspection, Optional[str]], None]


def is_pass_equivalent(inspection: Inspection) -> bool:
    """A pass, or a warning whose defects are all low/medium severity."""
    if inspection.status == "pass":
        return True
    return inspection.status == "warning" and all(
        d.severity in MINOR_SEVERITIES for d in inspection.defects
    )


def is_critical(inspection: Inspection) -> bool:
    """Critical verdict, or any single critical-severity defect."""
    return inspection.status == "critical" or any(
        d.severity == "critical" for d in inspection.defects
    )


def generate_inspection_id() -> str:
    return f"INS-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class InspectionSession:
    """Holds the inspections of one dashboard session and the metrics derived from them.

    Args:
        writer: called with (inspection, user_id) after every local insert to
            mirror it to the store. Its failures become notices.
        id_factory: produces inspection identifiers.
        rng: random source for the synthetic product id and line.
        clock: returns the creation time of new records.
        max_notices: how many undismissed notices are kept.
    """

    def __init__(
        self,
        writer: Optional[Writer] = None,
        id_factory: Callable[[], str] = generate_inspection_id,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
        max_notices: int = 20,
    ):
        self._inspections: List[Inspection] = []
        self._writer = writer
        self._id_factory = id_factory
        self._rng = rng or random.Random()
        self._clock = clock
        self._notices: Deque[Notice] = deque(maxlen=max_notices)
        # Bumped on every change; push loops compare it to detect updates
        self.version = 0

    @property
    def inspections(self) -> List[Inspection]:
        return list(self._inspections)

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def __len__(self) -> int:
        return len(self._inspections)

    def _contains(self, inspection_id: str) -> bool:
        return any(i.id == inspection_id for i in self._inspections)

    def merge(self, inspection: Inspection) -> bool:
        """Insert at the head unless a record with the same id is already present.

        Returns:
            True if the record was inserted.
        """
        if self._contains(inspection.id):
            return False
        self._inspections.insert(0, inspection)
        self.version += 1
        return True

    def seed(self, inspections: Iterable[Inspection]) -> None:
        """Replace the collection with previously stored records (newest first)."""
        seen = set()
        seeded = []
        for inspection in inspections:
            if inspection.id in seen:
                continue
            seen.add(inspection.id)
            seeded.append(inspection)
        self._inspections = seeded
        self.version += 1

    def _new_inspection(self, draft: InspectionDraft) -> Inspection:
        prefix = self._rng.choice(PRODUCT_PREFIXES)
        number = self._rng.randint(1000, 9999)
        return Inspection(
            **draft.model_dump(),
            id=self._id_factory(),
            product_id=f"{prefix}-{number}",
            line=self._rng.choice(PRODUCT_LINES),
            timestamp=format_timestamp(self._clock()),
        )

    def add_inspection(self, draft: InspectionDraft, user_id: Optional[str] = None) -> Inspection:
        """Give the draft an identity, insert it and mirror it to the store.

        The local insert stands even when the write fails; the failure is
        reported through ``notices``.
        """
        inspection = self._new_inspection(draft)
        self.merge(inspection)
        if self._writer is not None:
            self._write(inspection, user_id)
        return inspection

    def _write(self, inspection: Inspection, user_id: Optional[str]) -> None:
        try:
            self._writer(inspection, user_id)
        except AuthenticationRequiredError:
            logger.warning(f"Inspection {inspection.id} kept locally only: no signed-in user")
            self.push_notice(
                "Authentication required",
                "Please sign in to save inspections.",
                variant="destructive",
            )
        except StoreError as e:
            logger.error(f"Error saving inspection {inspection.id}: {e}")
            self.push_notice("Failed to save inspection", str(e), variant="destructive")

    def clear_inspections(self) -> None:
        self._inspections = []
        self.version += 1

    def push_notice(self, title: str, description: str, variant: str = "default") -> Notice:
        notice = Notice(id=uuid.uuid4().hex, title=title, description=description, variant=variant)
        self._notices.append(notice)
        self.version += 1
        return notice

    def dismiss_notice(self, notice_id: str) -> bool:
        for notice in self._notices:
            if notice.id == notice_id:
                self._notices.remove(notice)
                self.version += 1
                return True
        return False

    @property
    def metrics(self) -> InspectionMetrics:
        total = len(self._inspections)
        passed = sum(1 for i in self._inspections if is_pass_equivalent(i))
        return InspectionMetrics(
            total_inspections=total,
            pass_rate=(passed / total) * 100 if total > 0 else None,
            total_defects=sum(i.defects_found for i in self._inspections),
            critical_issues=sum(1 for i in self._inspections if is_critical(i)),
        )

    @property
    def defect_distribution(self) -> List[DistributionSlice]:
        counts: Dict[str, int] = {}
        for inspection in self._inspections:
            for defect in inspection.defects:
                counts[defect.type] = counts.get(defect.type, 0) + 1
        return [
            DistributionSlice(name=name, value=value, color=DEFECT_COLORS.get(name, DEFAULT_DEFECT_COLOR))
            for name, value in counts.items()
        ]

    def snapshot(self) -> Dict:
        """Everything the dashboard renders, in wire format."""
        return {
            "inspections": [i.model_dump(by_alias=True) for i in self._inspections],
            "metrics": self.metrics.model_dump(by_alias=True),
            "defectDistribution": [s.model_dump() for s in self.defect_distribution],
            "notices": [n.model_dump() for n in self._notices],
            "version": self.version,
        }
