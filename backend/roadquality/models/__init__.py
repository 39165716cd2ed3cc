from roadquality.models.base import Base
from roadquality.models.condition_record import ConditionRecordRow

__all__ = [
    "Base",
    "ConditionRecordRow",
]
