from fastapi import APIRouter, Depends
from pydantic import BaseModel

from testtrack.core.dependencies import get_session, get_visitor_dsl
from testtrack.services.session import Session, VisitorDSL

router = APIRouter(prefix="/test_track", tags=["test_track"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class StateOut(BaseModel):
    url: str | None
    cookieDomain: str | None
    registry: dict[str, dict[str, int]] | None
    assignments: dict[str, str] | None


class AssignmentOut(BaseModel):
    split_name: str
    variant: str | None
    feature_gate: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/state", response_model=StateOut)
async def get_state(session: Session = Depends(get_session)) -> StateOut:
    """Client hydration payload for the current visitor."""
    return StateOut(**await session.state_hash())


@router.get("/assignments/{split_name}", response_model=AssignmentOut)
async def get_assignment(split_name: str, visitor: VisitorDSL = Depends(get_visitor_dsl)) -> AssignmentOut:
    """Resolve the current visitor's variant for one split."""
    assignment = visitor.assignment_for(split_name)
    return AssignmentOut(
        split_name=assignment.split_name,
        variant=assignment.variant,
        feature_gate=assignment.feature_gate,
    )
