"""Raw vacancy observations read from the evidence store.

Observations form a closed tagged union on ``kind``.  Adding a new kind
means adding a model here *and* a branch in the aggregator; there is no
catch-all record type.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class FacilityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    facility_id: str
    name: str = "어린이집"
    address: str = ""
    lat: float | None = None
    lng: float | None = None
    capacity_total: int = Field(default=0, ge=0)
    capacity_by_class: dict[str, int] = Field(default_factory=dict)


class WaitlistSnapshot(BaseModel):
    """Periodic enrolment/waitlist snapshot with a detected-vacancy flag.

    ``to_detected`` is ``None`` when nothing changed, ``False`` for a
    first-stage candidate and ``True`` once the vacancy was confirmed.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["waitlist_snapshot"] = "waitlist_snapshot"
    facility_id: str
    snapshot_date: datetime
    current_enrolled: int = 0
    waitlist_by_class: dict[str, int] = Field(default_factory=dict)
    enrolled_delta: int = 0
    to_detected: bool | None = None
    source: Literal["public_api", "manual", "places_sync"] = "places_sync"
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class CommunityMention(BaseModel):
    """Community-sourced vacancy mention produced by the partner extractor."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["community_mention"] = "community_mention"
    facility_id: str
    reported_at: datetime
    source_id: str
    estimated_slots: int = Field(default=1, ge=0)
    age_class: int | None = Field(default=None, ge=0, le=5)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class AdmissionRecord(BaseModel):
    """Historical admission outcome reported for a facility."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["admission_record"] = "admission_record"
    facility_id: str
    admitted_at: datetime
    age_band: int = Field(ge=0, le=5)
    waited_months: float = Field(ge=0.0)
    priority_type: str = "general"


VacancyObservation = Annotated[
    WaitlistSnapshot | CommunityMention | AdmissionRecord,
    Field(discriminator="kind"),
]

observation_adapter: TypeAdapter[WaitlistSnapshot | CommunityMention | AdmissionRecord] = (
    TypeAdapter(VacancyObservation)
)
