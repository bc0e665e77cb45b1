"""Review sync pipeline components."""
from .alerts import AlertEngine, LocationMetrics, compute_metrics, evaluate_rules
from .fetcher import FetchResult, PaginatedFetcher
from .jobs import JobQueueProcessor, enqueue_sync_job
from .notifications import NotificationChannel, NotificationDispatcher
from .pipeline import Deadline, SyncPipeline, run_once
from .reconcile import ReconciliationEngine, ReconcileResult
from .status import StatusRecorder
from .tokens import TokenManager

__all__ = [
    "AlertEngine",
    "LocationMetrics",
    "compute_metrics",
    "evaluate_rules",
    "FetchResult",
    "PaginatedFetcher",
    "JobQueueProcessor",
    "enqueue_sync_job",
    "NotificationChannel",
    "NotificationDispatcher",
    "Deadline",
    "SyncPipeline",
    "run_once",
    "ReconciliationEngine",
    "ReconcileResult",
    "StatusRecorder",
    "TokenManager",
]
