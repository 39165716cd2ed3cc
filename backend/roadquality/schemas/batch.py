from pydantic import BaseModel, Field


# Range, size and ordering checks live in build_batch so they are reported as
# a rejected batch rather than a schema error.
class SensorSampleIn(BaseModel):
    timestamp: float = Field(description="Seconds since the unix epoch")
    ax: float
    ay: float
    az: float
    lat: float | None = None
    lon: float | None = None
    speed_mps: float | None = None


class SensorBatchIn(BaseModel):
    session_id: str
    samples: list[SensorSampleIn]
