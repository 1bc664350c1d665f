"""Per-account pipelines and their process-level owner."""

from .coordinator import CoordinatorStats, PipelineCoordinator
from .service import StartupError, SyncService, build_notifier, open_repository

__all__ = [
    "CoordinatorStats",
    "PipelineCoordinator",
    "StartupError",
    "SyncService",
    "build_notifier",
    "open_repository",
]
