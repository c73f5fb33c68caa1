"""
Indexing progress notifications: a narrow emit(project_id, event) interface injected into the pipeline.
Fire-and-forget; nobody has to be listening.
"""
import logging
import threading
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class ProgressStage(str, Enum):
    """Coarse stages of an indexing run, in order."""
    CLONING = "cloning"
    PROCESSING = "processing"
    SCANNING = "scanning"
    CLEARING_EMBEDDINGS = "clearing_embeddings"
    CREATING_EMBEDDINGS = "creating_embeddings"
    CLEANING = "cleaning"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ProgressEvent:
    status: str
    progress: int
    message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization, dropping empty fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class ProgressSink(Protocol):
    def emit(self, project_id: str, event: ProgressEvent) -> None:
        ...


class NullProgressSink:
    """Drops every event. Default when no listener exists."""

    def emit(self, project_id: str, event: ProgressEvent) -> None:
        return None


class LoggingProgressSink:
    def emit(self, project_id: str, event: ProgressEvent) -> None:
        logger.info("indexing_progress", extra={"project_id": project_id, "stage": event.status, "progress": event.progress})


class ProgressTracker:
    """Keeps the latest event per project so clients can poll GET /projects/{id}/index/progress.
    Emit never raises; a failing downstream sink is logged and ignored."""

    def __init__(self, downstream: Optional[ProgressSink] = None):
        self._lock = threading.Lock()
        self._latest: Dict[str, ProgressEvent] = {}
        self._downstream = downstream

    def emit(self, project_id: str, event: ProgressEvent) -> None:
        with self._lock:
            self._latest[project_id] = event
        if self._downstream is not None:
            try:
                self._downstream.emit(project_id, event)
            except Exception:
                logger.warning("progress_sink_failed", exc_info=True, extra={"project_id": project_id})

    def latest(self, project_id: str) -> Optional[ProgressEvent]:
        with self._lock:
            return self._latest.get(project_id)

    def forget(self, project_id: str) -> None:
        with self._lock:
            self._latest.pop(project_id, None)
