"""Pydantic models for admission score queries and results.

``AdmissionQuery`` is the validated input shared by every caller (API
route, chat assistant, CLI, MCP tools).  ``AdmissionScoreResult`` is the
immutable output of one scoring pass; cached copies are returned as-is.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class PriorityType(StrEnum):
    """Government-defined applicant priority categories."""

    dual_income = "dual_income"
    sibling = "sibling"
    single_parent = "single_parent"
    multi_child = "multi_child"
    disability = "disability"
    low_income = "low_income"
    general = "general"


class AdmissionQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    facility_id: str = Field(min_length=1, max_length=128)
    child_age_band: int = Field(ge=0, le=5)
    waiting_position: int | None = Field(default=None, ge=1, le=500)
    priority_type: PriorityType = PriorityType.general


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------

EvidenceKind = Literal["to_snapshot", "community_report", "historical_admission"]
Grade = Literal["A", "B", "C", "D", "F"]


class EvidenceItem(BaseModel):
    """One human-readable evidence cluster backing a result."""

    model_config = ConfigDict(frozen=True)

    kind: EvidenceKind
    summary: str
    source_count: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    data_points: dict[str, float] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class AdmissionScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    facility_id: str
    facility_name: str
    probability: float = Field(ge=0.0, le=1.0)
    admission_score: int = Field(ge=1, le=99)
    grade: Grade
    confidence: float = Field(ge=0.0, le=1.0)
    estimated_months_median: int = Field(ge=1)
    estimated_months_80th: int = Field(ge=1)
    evidence: list[EvidenceItem] = Field(default_factory=list)
    region_key: str
    engine_version: str
    calculated_at: str

    @model_validator(mode="after")
    def _check_wait_order(self) -> "AdmissionScoreResult":
        if self.estimated_months_80th < self.estimated_months_median:
            raise ValueError("estimated_months_80th must be >= estimated_months_median")
        return self
