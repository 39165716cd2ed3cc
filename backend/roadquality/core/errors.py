"""Error taxonomy for ingestion, scoring, querying and the backing stores."""
from __future__ import annotations


class RoadQualityError(Exception):
    """Base class for every error raised by the road-quality pipeline."""


class InvalidBatchError(RoadQualityError):
    """A submitted batch is malformed and is rejected before queueing."""


class InsufficientDataError(RoadQualityError):
    """Too few samples to extract stable statistical/spectral features."""


class InvalidFeatureError(RoadQualityError):
    """A feature value is non-finite or outside its domain."""


class OverloadError(RoadQualityError):
    """The ingestion queue for a batch's partition is full."""


class InvalidQueryError(RoadQualityError):
    """A spatial query has malformed parameters."""


class InvalidRadiusError(InvalidQueryError):
    """A spatial query radius is not a positive finite number of meters."""


class PersistenceError(RoadQualityError):
    """The record store could not be reached or rejected a write."""


class CacheUnavailableError(RoadQualityError):
    """The cache backend could not be reached."""


class AlertDeliveryError(RoadQualityError):
    """A severity alert could not be delivered."""
