"""Exceptions raised by the admission engine.

Callers map these onto their own transport: the API layer turns
``EvidenceStoreUnavailableError`` into a 503 and ``FacilityNotFoundError``
into a 404.  Sparse evidence is never an error.
"""


class EvidenceStoreUnavailableError(RuntimeError):
    """The evidence store is missing or cannot be reached."""

    status_code = 503
    code = "evidence_store_unavailable"


class FacilityNotFoundError(LookupError):
    """No facility record exists for the requested ``facility_id``."""

    status_code = 404
    code = "facility_not_found"

    def __init__(self, facility_id: str) -> None:
        super().__init__(f"Facility not found: {facility_id}")
        self.facility_id = facility_id
