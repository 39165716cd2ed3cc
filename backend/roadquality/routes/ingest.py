from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from roadquality.core.errors import InvalidBatchError, OverloadError
from roadquality.core.runtime import Runtime, get_runtime
from roadquality.schemas.batch import SensorBatchIn
from roadquality.services.samples import SensorSample

router = APIRouter(prefix="/ingest", tags=["ingest"])

OVERLOAD_RETRY_AFTER_S = 5


@router.post("/batches", status_code=202)
def submit_batch(payload: SensorBatchIn, runtime: Runtime = Depends(get_runtime)):
    samples = [
        SensorSample(
            timestamp=s.timestamp,
            ax=s.ax,
            ay=s.ay,
            az=s.az,
            lat=s.lat,
            lon=s.lon,
            speed_mps=s.speed_mps,
        )
        for s in payload.samples
    ]

    try:
        batch_id = runtime.pipeline.submit(payload.session_id, samples)
    except InvalidBatchError as exc:
        return JSONResponse(status_code=400, content={"status": "rejected", "reason": str(exc)})
    except OverloadError as exc:
        return JSONResponse(
            status_code=503,
            content={"status": "rejected", "reason": str(exc)},
            headers={"Retry-After": str(OVERLOAD_RETRY_AFTER_S)},
        )

    return {"status": "accepted", "batch_id": batch_id}


@router.get("/stats")
def ingest_stats(runtime: Runtime = Depends(get_runtime)):
    return {
        "pipeline": runtime.pipeline.stats(),
        "cache": runtime.cache.stats(),
        "query_computations": runtime.query_engine.computations,
    }
