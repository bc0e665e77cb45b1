"""Schemas package initialization."""
from .api import (
    EnqueueRequest,
    ErrorBody,
    ErrorEnvelope,
    JobStats,
    SyncRequest,
    SyncResponse,
    SyncStats,
)
from .reviews import ExternalReview, NormalizedReview, normalize_review

__all__ = [
    "EnqueueRequest",
    "ErrorBody",
    "ErrorEnvelope",
    "JobStats",
    "SyncRequest",
    "SyncResponse",
    "SyncStats",
    "ExternalReview",
    "NormalizedReview",
    "normalize_review",
]
