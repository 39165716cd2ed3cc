from datetime import datetime

from pydantic import BaseModel


class ConditionOut(BaseModel):
    record_id: int | None
    lat: float
    lon: float
    score: float
    category: str
    timestamp: datetime
    distance_m: float
