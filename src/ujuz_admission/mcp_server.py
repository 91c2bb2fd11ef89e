"""MCP server for the UJUz admission engine.

Exposes admission scoring as MCP tools so that the chat assistant (or any
other MCP-capable agent) can query it directly.

Run with:
    ujuz-admission mcp            # stdio transport (default)
    ujuz-admission mcp --sse      # SSE transport on port 8080

Or add to your MCP client config:
    {
      "mcpServers": {
        "ujuz-admission": {
          "command": "ujuz-admission",
          "args": ["mcp"]
        }
      }
    }
"""

import json
import logging
import threading
from typing import Annotated

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from ujuz_admission.models.admission import AdmissionQuery, PriorityType
from ujuz_admission.services.engine import AdmissionEngine, build_default_engine

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "ujuz-admission",
    instructions=(
        "Childcare admission probability tools for Seoul-metro daycare centres. "
        "Given a facility ID and the child's age band (0-5), returns the "
        "probability of admission within 6 months, a grade (A-F), a 1-99 score, "
        "the expected wait and the evidence behind the estimate. "
        "Results are estimates, never guarantees."
    ),
)

_engine: AdmissionEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> AdmissionEngine:
    """Return the process-wide engine, building it from settings on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = build_default_engine()
            logger.info(
                "Admission engine initialised (calibration %s)",
                _engine.calibration.engine_version,
            )
        return _engine


def set_engine(engine: AdmissionEngine | None) -> None:
    """Replace the process-wide engine (``None`` resets to lazy default)."""
    global _engine
    with _engine_lock:
        _engine = engine


def _query(
    facility_id: str,
    child_age_band: int,
    waiting_position: int | None,
    priority_type: str,
) -> AdmissionQuery:
    return AdmissionQuery(
        facility_id=facility_id,
        child_age_band=child_age_band,
        waiting_position=waiting_position,
        priority_type=PriorityType(priority_type),
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

_FacilityId = Annotated[str, Field(description="Facility (daycare centre) identifier.")]
_AgeBand = Annotated[
    int, Field(description="Child age band 0-5 (0 = infant class, 5 = five-year-old class).")
]
_WaitingPosition = Annotated[
    int | None,
    Field(description="Current waiting-list position (1-500). Estimated if omitted."),
]
_Priority = Annotated[
    str,
    Field(
        description=(
            "Applicant priority type: dual_income, sibling, single_parent, "
            "multi_child, disability, low_income or general."
        )
    ),
]


@mcp.tool()
def get_admission_score(
    facility_id: _FacilityId,
    child_age_band: _AgeBand,
    waiting_position: _WaitingPosition = None,
    priority_type: _Priority = "general",
) -> str:
    """Get the admission probability for a child at a daycare centre.

    Returns a JSON object with ``probability`` (0-1), ``admission_score``
    (1-99), ``grade`` (A-F), ``confidence``, ``estimated_months_median``,
    ``estimated_months_80th``, ``region_key``, ``engine_version`` and the
    ``evidence`` list (strongest first).
    """
    query = _query(facility_id, child_age_band, waiting_position, priority_type)
    result = get_engine().score(query)
    return json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False)


@mcp.tool()
def get_admission_bot_text(
    facility_id: _FacilityId,
    child_age_band: _AgeBand,
    waiting_position: _WaitingPosition = None,
    priority_type: _Priority = "general",
) -> str:
    """Get a short Korean chat reply describing the admission outlook.

    Same estimate as ``get_admission_score``, rendered for end users.
    """
    query = _query(facility_id, child_age_band, waiting_position, priority_type)
    return get_engine().bot_text(query)


if __name__ == "__main__":
    mcp.run(transport="stdio")
