from fastapi import APIRouter, Depends, HTTPException, Query

from roadquality.core.errors import InvalidQueryError, PersistenceError
from roadquality.core.runtime import Runtime, get_runtime
from roadquality.schemas.condition import ConditionOut

router = APIRouter(prefix="/conditions", tags=["conditions"])


@router.get("", response_model=list[ConditionOut])
def get_conditions(
    lat: float,
    lon: float,
    radius_m: float,
    limit: int | None = Query(default=None),
    runtime: Runtime = Depends(get_runtime),
):
    """
    Scored road conditions within radius_m of (lat, lon), nearest first.
    """
    if limit is None:
        limit = runtime.settings.QUERY_DEFAULT_LIMIT

    try:
        results = runtime.query_engine.nearby(lat, lon, radius_m, limit)
    except InvalidQueryError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    return [
        ConditionOut(
            record_id=item.record.record_id,
            lat=item.record.lat,
            lon=item.record.lon,
            score=item.record.score,
            category=item.record.category.value,
            timestamp=item.record.recorded_at,
            distance_m=round(item.distance_m, 2),
        )
        for item in results
    ]
