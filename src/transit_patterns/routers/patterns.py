"""Pattern editing endpoints.

Endpoints
---------
PUT  /patterns/{pattern_id}/halts       – replace a pattern's halts and reconcile its trips
POST /patterns/{pattern_id}/normalize   – retime a pattern's stop times from its halts
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from transit_patterns.database import get_session
from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.editor import PatternEditor
from transit_patterns.services.patterns.errors import (
    InterpolationError,
    MissingReferenceIdError,
    PatternBusyError,
    ReconciliationError,
)
from transit_patterns.services.patterns.records import PatternHalt, halt_from_row

logger = get_logger(__name__)

router = APIRouter(prefix="/patterns", tags=["patterns"])

PatternId = Annotated[str, Path(min_length=1, max_length=128, description="Pattern id")]


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class HaltIn(BaseModel):
    """One halt of a pattern. Exactly one reference id should be set."""

    stop_id: Optional[str] = None
    location_group_id: Optional[str] = None
    location_id: Optional[str] = None

    default_travel_time: Optional[int] = Field(default=None, ge=0)
    default_dwell_time: Optional[int] = Field(default=None, ge=0)
    flex_default_travel_time: Optional[int] = Field(default=None, ge=0)
    flex_default_zone_time: Optional[int] = Field(default=None, ge=0)
    shape_dist_traveled: Optional[float] = None

    pickup_type: Optional[int] = None
    drop_off_type: Optional[int] = None
    timepoint: Optional[int] = None
    stop_headsign: Optional[str] = None
    continuous_pickup: Optional[int] = None
    continuous_drop_off: Optional[int] = None
    pickup_booking_rule_id: Optional[str] = None
    drop_off_booking_rule_id: Optional[str] = None


class UpdateHaltsRequest(BaseModel):
    halts: list[HaltIn] = Field(description="Halts in travel order")
    normalize: bool = Field(
        default=True,
        description="Recompute stop times from the first changed halt onwards.",
    )
    use_frequency: bool = Field(
        default=False,
        description="Frequency-based pattern: rewrite all stop times starting at 0.",
    )


class UpdateHaltsResponse(BaseModel):
    pattern_id: str
    operation: str
    reconciled: bool
    halt_count: int
    stop_times_updated: int


class NormalizeRequest(BaseModel):
    begin_stop_sequence: int = Field(default=0, ge=0)
    interpolate: bool = Field(
        default=False,
        description="Derive non-timepoint times from shape distance between timepoints.",
    )


class NormalizeResponse(BaseModel):
    pattern_id: str
    updated: int


def _to_halts(pattern_id: str, halts: list[HaltIn]) -> list[PatternHalt]:
    return [
        halt_from_row({**halt.model_dump(), "pattern_id": pattern_id, "stop_sequence": index})
        for index, halt in enumerate(halts)
    ]


# ---------------------------------------------------------------------------
# PUT /patterns/{pattern_id}/halts
# ---------------------------------------------------------------------------


@router.put(
    "/{pattern_id}/halts",
    response_model=UpdateHaltsResponse,
    summary="Replace a pattern's halts",
    description=(
        "Replace the ordered halts of a pattern. When trips use the pattern, the "
        "change must be a single addition, removal or move, or new halts appended "
        "at the end; their stop_times are shifted to match. Swapping one halt for "
        "another is rejected with 409."
    ),
)
async def update_pattern_halts(
    pattern_id: PatternId,
    body: UpdateHaltsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any]:
    try:
        halts = _to_halts(pattern_id, body.halts)
    except MissingReferenceIdError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    editor = PatternEditor(session)
    try:
        result = await editor.update_halts(
            pattern_id,
            halts,
            normalize=body.normalize,
            use_frequency=body.use_frequency,
        )
    except MissingReferenceIdError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (ReconciliationError, PatternBusyError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.error("Unexpected pattern edit error", exc_info=exc, pattern_id=pattern_id)
        raise HTTPException(status_code=500, detail="Pattern update failed") from exc

    return result.to_dict()


# ---------------------------------------------------------------------------
# POST /patterns/{pattern_id}/normalize
# ---------------------------------------------------------------------------


@router.post(
    "/{pattern_id}/normalize",
    response_model=NormalizeResponse,
    summary="Normalize a pattern's stop times",
)
async def normalize_pattern(
    pattern_id: PatternId,
    body: NormalizeRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any]:
    editor = PatternEditor(session)
    try:
        updated = await editor.normalize(
            pattern_id, body.begin_stop_sequence, body.interpolate
        )
    except (InterpolationError, PatternBusyError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logger.error("Unexpected normalization error", exc_info=exc, pattern_id=pattern_id)
        raise HTTPException(status_code=500, detail="Stop time normalization failed") from exc

    return {"pattern_id": pattern_id, "updated": updated}
