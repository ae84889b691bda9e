"""Admin routes for pattern builds."""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.errors import PatternPersistenceError
from transit_patterns.services.patterns.runner import PatternBuildRunner

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class PatternBuildRequest(BaseModel):
    """Request body for a pattern build."""

    batch_size: Optional[int] = Field(
        default=None,
        ge=1,
        le=100000,
        description="Rows per INSERT batch. Defaults to env PATTERN_BATCH_SIZE.",
    )


class PatternBuildResponse(BaseModel):
    """Response body for a pattern build."""

    status: Literal["success", "failed"]
    build_id: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: Optional[int] = None
    trip_count: int
    pattern_count: int
    trips_assigned: int
    reused_feed_patterns: bool
    warnings: List[str]
    errors: List[str]


# TODO: Protect with an admin-role check once auth is added to this service.
@router.post(
    "/patterns/build",
    response_model=PatternBuildResponse,
    summary="Build trip patterns",
    description=(
        "Group every trip in the loaded feed by its ordered sequence of halts, "
        "name the resulting patterns, write the patterns and pattern_stops tables "
        "and set trips.pattern_id. Patterns already present in the feed are reused "
        "when they cover every trip."
    ),
)
async def build_patterns(body: Optional[PatternBuildRequest] = None) -> Dict[str, Any]:
    """Run pattern discovery and persistence over the stored feed."""
    body = body or PatternBuildRequest()
    runner = PatternBuildRunner(batch_size=body.batch_size)

    try:
        report = await runner.run()
    except PatternPersistenceError as exc:
        logger.error("Pattern build failed", exc_info=exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:
        logger.error("Unexpected pattern build error", exc_info=exc)
        raise HTTPException(
            status_code=500,
            detail=f"Pattern build failed unexpectedly: {type(exc).__name__}: {exc}",
        ) from exc

    return report.to_dict()
