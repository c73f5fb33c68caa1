from typing import Any, Dict, Optional

from app.core.config import settings
from app.db.store import RelationalStore
from app.ingest.errors import IndexingError
from app.ingest.indexer import VectorStore
from app.ingest.jobs import JobQueue, JobType
from app.ingest.pipeline import IndexingPayload, RepositoryIndexer
from app.ingest.progress import ProgressSink
from app.ingest.transcription import MeetingTranscriber, TranscriptionPayload


def run_indexing_job(indexer: RepositoryIndexer, payload: IndexingPayload) -> Dict[str, Any]:
    """Run one repository indexing job; a failure result becomes IndexingError so the job is marked failed.
    Why available: The pipeline reports failure as a value, the queue only understands exceptions."""
    result = indexer.index_repository(payload.project_id, payload.repo_url)
    if not result.success:
        raise IndexingError(result.error or "Indexing failed")
    return result.to_dict()


def run_transcription_job(transcriber: MeetingTranscriber, payload: TranscriptionPayload) -> Dict[str, Any]:
    return transcriber.process_transcription(payload)


def build_job_queue(
    store: RelationalStore,
    vector_store: VectorStore,
    *,
    progress: Optional[ProgressSink] = None,
    indexer: Optional[RepositoryIndexer] = None,
    transcriber: Optional[MeetingTranscriber] = None,
    retention_seconds: Optional[float] = None,
) -> JobQueue:
    """Wire a JobQueue to the indexing and transcription pipelines.
    Why available: Single place where job types map to pipelines, so the app and tests share the same dispatch."""
    indexer = indexer or RepositoryIndexer(store, vector_store, progress=progress)
    transcriber = transcriber or MeetingTranscriber(store, vector_store)
    return JobQueue(
        {
            JobType.INDEXING: lambda payload: run_indexing_job(indexer, payload),
            JobType.TRANSCRIPTION: lambda payload: run_transcription_job(transcriber, payload),
        },
        retention_seconds=settings.job_retention_seconds if retention_seconds is None else retention_seconds,
    )
