import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
)

from app.core.config import settings
from app.db.base import init_db, make_engine, make_session_factory
from app.db.store import RelationalStore
from app.guardrails.errors import as_http_error
from app.guardrails.prompt_injection import detect_prompt_injection
from app.guardrails.rate_limit import SimpleRateLimiter
from app.ingest.indexer import VectorStore
from app.ingest.jobs import JobQueue, JobType
from app.ingest.pipeline import IndexingPayload
from app.ingest.progress import LoggingProgressSink, ProgressTracker
from app.ingest.transcription import TranscriptionPayload, meeting_file_path
from app.ingest.worker import build_job_queue
from app.models.schemas import (
    ChatRequest,
    ChatResponse,
    CommitOut,
    IndexQueuedResponse,
    IndexStatusResponse,
    JobStatusResponse,
    LimitsResponse,
    MeetingOut,
    MeetingUploadResponse,
    ProgressResponse,
    ProjectCreate,
    ProjectOut,
    SourceFileOut,
    SourceFileSummary,
)
from app.observability.middleware import RequestTimingMiddleware, get_request_id
from app.rag.answerer import answer_question

logger = logging.getLogger(__name__)


# -------------------------
# Collaborators (created lazily, overridable in tests via app.dependency_overrides)
# -------------------------

_store: Optional[RelationalStore] = None
_vector_store: Optional[VectorStore] = None
_progress_tracker: Optional[ProgressTracker] = None
_job_queue: Optional[JobQueue] = None


def get_store() -> RelationalStore:
    global _store
    if _store is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        _store = RelationalStore(make_session_factory(engine))
    return _store


def get_vector_store() -> VectorStore:
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore()
    return _vector_store


def get_progress_tracker() -> ProgressTracker:
    global _progress_tracker
    if _progress_tracker is None:
        _progress_tracker = ProgressTracker(downstream=LoggingProgressSink())
    return _progress_tracker


def get_job_queue(
    store: RelationalStore = Depends(get_store),
    vector_store: VectorStore = Depends(get_vector_store),
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> JobQueue:
    """Return the process-wide job queue, wired to the indexing and transcription pipelines on first use.
    Why available: One queue (one worker thread) per process so at most one job runs at a time."""
    global _job_queue
    if _job_queue is None:
        _job_queue = build_job_queue(store, vector_store, progress=tracker)
    return _job_queue


# -------------------------
# App setup
# -------------------------

@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    os.makedirs(settings.repos_root, exist_ok=True)
    os.makedirs(settings.meetings_root, exist_ok=True)
    yield
    if _job_queue is not None and not _job_queue.wait_idle(timeout=5):
        logger.warning("shutdown_with_pending_jobs", extra=_job_queue.stats())


app = FastAPI(title="Repository Intelligence", lifespan=lifespan)
app.add_middleware(RequestTimingMiddleware)


RATE_LIMIT_REQUESTS = 20
RATE_LIMIT_WINDOW_SECONDS = 60
rate_limiter = SimpleRateLimiter(max_requests=RATE_LIMIT_REQUESTS, window_seconds=RATE_LIMIT_WINDOW_SECONDS)


def _require_project(store: RelationalStore, project_id: str):
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _meeting_out(meeting) -> MeetingOut:
    out = MeetingOut.model_validate(meeting)
    out.status = "completed" if meeting.transcript else "processing"
    return out


# -------------------------
# Root
# -------------------------

@app.get("/")
def root():
    """Returns a minimal welcome payload with app name and docs URL.
    Why available: Gives clients and load balancers a simple root endpoint to confirm the API is running."""
    return {"app": "Repository Intelligence", "docs": "/docs"}


@app.get("/health")
def health(queue: JobQueue = Depends(get_job_queue)):
    """Returns 200 OK with status and job queue counts. Used by load balancers and probes to check if the API is up."""
    return {"status": "ok", "jobs": queue.stats()}


@app.get("/limits", response_model=LimitsResponse)
def limits(request: Request):
    """Returns current API limits (upload size and formats, retrieval top_k, batch size, rate limit window).
    Why available: Lets clients display or enforce limits before uploading or chatting."""
    rate_limiter.check(request)
    return LimitsResponse(
        max_audio_mb=settings.max_audio_mb,
        allowed_audio_formats=settings.allowed_audio_formats,
        retrieve_top_k=settings.retrieve_top_k,
        embedding_batch_size=settings.embedding_batch_size,
        commit_log_limit=settings.commit_log_limit,
        rate_limit_requests=RATE_LIMIT_REQUESTS,
        rate_limit_window_seconds=RATE_LIMIT_WINDOW_SECONDS,
    )


# -------------------------
# Projects
# -------------------------

@app.post("/projects", response_model=ProjectOut, status_code=201)
def create_project(req: ProjectCreate, request: Request, store: RelationalStore = Depends(get_store)):
    rate_limiter.check(request)
    return store.create_project(name=req.name.strip(), github_url=req.github_url.strip())


@app.get("/projects", response_model=List[ProjectOut])
def list_projects(store: RelationalStore = Depends(get_store)):
    return store.list_projects()


@app.get("/projects/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, store: RelationalStore = Depends(get_store)):
    return _require_project(store, project_id)


@app.delete("/projects/{project_id}")
def delete_project(
    project_id: str,
    request: Request,
    store: RelationalStore = Depends(get_store),
    vector_store: VectorStore = Depends(get_vector_store),
    tracker: ProgressTracker = Depends(get_progress_tracker),
):
    """Deletes the project with its commits, files and meetings, and removes its embeddings from Qdrant."""
    rate_limiter.check(request)
    _require_project(store, project_id)
    try:
        vector_store.delete_project_embeddings(project_id)
    except Exception as e:
        raise as_http_error(e)
    store.delete_project(project_id)
    tracker.forget(project_id)
    return {"deleted": project_id}


# -------------------------
# Indexing
# -------------------------

@app.post("/projects/{project_id}/index", response_model=IndexQueuedResponse, status_code=202)
def start_indexing(
    project_id: str,
    request: Request,
    store: RelationalStore = Depends(get_store),
    queue: JobQueue = Depends(get_job_queue),
):
    """Enqueues a repository indexing job for the project and returns its job_id. Client polls GET /jobs/{job_id} (pending / processing / completed / failed).
    Why available: Cloning and embedding a repository takes minutes; the request returns immediately."""
    rate_limiter.check(request)
    project = _require_project(store, project_id)
    job_id = queue.enqueue(JobType.INDEXING, IndexingPayload(project_id=project.id, repo_url=project.github_url))
    logger.info("indexing_queued", extra={"project_id": project_id, "job_id": job_id, "request_id": get_request_id(request)})
    return IndexQueuedResponse(job_id=job_id)


@app.get("/projects/{project_id}/index", response_model=IndexStatusResponse)
def indexing_status(project_id: str, store: RelationalStore = Depends(get_store)):
    _require_project(store, project_id)
    counts = store.count_project_records(project_id)
    status = "completed" if counts["files"] > 0 or counts["commits"] > 0 else "pending"
    return IndexStatusResponse(project_id=project_id, status=status, **counts)


@app.get("/projects/{project_id}/index/progress", response_model=ProgressResponse)
def indexing_progress(
    project_id: str,
    store: RelationalStore = Depends(get_store),
    tracker: ProgressTracker = Depends(get_progress_tracker),
):
    """Returns the latest progress event of the project's most recent indexing run."""
    _require_project(store, project_id)
    event = tracker.latest(project_id)
    if event is None:
        raise HTTPException(status_code=404, detail="No indexing progress recorded for this project")
    return ProgressResponse(project_id=project_id, **event.to_dict())


# -------------------------
# Jobs
# -------------------------

@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
def job_status(job_id: str, request: Request, queue: JobQueue = Depends(get_job_queue)):
    """Returns status for a background job. Finished jobs are kept for a few minutes, then 404.
    Why available: Lets clients poll after POST /projects/{id}/index or a meeting upload to know when it finished or failed."""
    rate_limiter.check(request)
    job = queue.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**job.to_dict())


# -------------------------
# Meetings
# -------------------------

@app.post("/projects/{project_id}/meetings/upload", response_model=MeetingUploadResponse, status_code=201)
async def upload_meeting(
    project_id: str,
    request: Request,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    meeting_date: Optional[str] = Form(None),
    store: RelationalStore = Depends(get_store),
    queue: JobQueue = Depends(get_job_queue),
):
    """Saves an uploaded meeting recording, creates the meeting, and enqueues its transcription.
    Why available: Meeting audio becomes a transcript and summary in the background; the client polls the job or the meeting."""
    rate_limiter.check(request)
    _require_project(store, project_id)

    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in settings.allowed_audio_formats:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file format. Allowed: {', '.join(settings.allowed_audio_formats)}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file provided")
    if len(content) > settings.max_audio_bytes:
        raise HTTPException(status_code=400, detail=f"File size exceeds {settings.max_audio_mb}MB limit")

    parsed_date = None
    if meeting_date:
        try:
            parsed_date = datetime.fromisoformat(meeting_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="meeting_date must be an ISO 8601 date")

    os.makedirs(settings.meetings_root, exist_ok=True)
    file_name = f"{project_id}-{int(time.time() * 1000)}{ext}"
    audio_path = os.path.join(settings.meetings_root, file_name)
    with open(audio_path, "wb") as out:
        out.write(content)

    meeting = store.create_meeting(
        project_id,
        title=(title or "").strip() or f"Meeting {time.strftime('%Y-%m-%d')}",
        meeting_date=parsed_date,
        audio_url=f"/temp/meetings/{file_name}",
    )
    job_id = queue.enqueue(
        JobType.TRANSCRIPTION,
        TranscriptionPayload(meeting_id=meeting.id, audio_path=audio_path, project_id=project_id),
    )
    logger.info("transcription_queued", extra={"meeting_id": meeting.id, "job_id": job_id, "request_id": get_request_id(request)})
    return MeetingUploadResponse(meeting=_meeting_out(meeting), job_id=job_id)


@app.get("/projects/{project_id}/meetings", response_model=List[MeetingOut])
def list_meetings(project_id: str, store: RelationalStore = Depends(get_store)):
    _require_project(store, project_id)
    return [_meeting_out(m) for m in store.list_meetings(project_id)]


@app.get("/projects/{project_id}/meetings/{meeting_id}", response_model=MeetingOut)
def get_meeting(project_id: str, meeting_id: str, store: RelationalStore = Depends(get_store)):
    meeting = store.get_meeting(meeting_id)
    if meeting is None or meeting.project_id != project_id:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return _meeting_out(meeting)


@app.delete("/projects/{project_id}/meetings/{meeting_id}")
def delete_meeting(
    project_id: str,
    meeting_id: str,
    request: Request,
    store: RelationalStore = Depends(get_store),
    vector_store: VectorStore = Depends(get_vector_store),
):
    rate_limiter.check(request)
    if not store.delete_meeting(project_id, meeting_id):
        raise HTTPException(status_code=404, detail="Meeting not found")
    vector_store.delete_file_embeddings(project_id, [meeting_file_path(meeting_id)])
    return {"deleted": meeting_id}


# -------------------------
# Commits & files
# -------------------------

@app.get("/projects/{project_id}/commits", response_model=List[CommitOut])
def list_commits(project_id: str, limit: int = 50, store: RelationalStore = Depends(get_store)):
    _require_project(store, project_id)
    if limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be > 0")
    return store.list_commits(project_id, limit=limit)


@app.get("/projects/{project_id}/files", response_model=List[SourceFileSummary])
def list_files(project_id: str, store: RelationalStore = Depends(get_store)):
    _require_project(store, project_id)
    return store.list_source_files(project_id)


@app.get("/projects/{project_id}/files/{file_id}", response_model=SourceFileOut)
def get_file(project_id: str, file_id: str, store: RelationalStore = Depends(get_store)):
    row = store.get_source_file(project_id, file_id)
    if row is None:
        raise HTTPException(status_code=404, detail="File not found")
    return row


# -------------------------
# Chat (RAG over code, commits and meetings)
# -------------------------

@app.post("/projects/{project_id}/chat", response_model=ChatResponse)
def chat(
    project_id: str,
    req: ChatRequest,
    request: Request,
    store: RelationalStore = Depends(get_store),
    vector_store: VectorStore = Depends(get_vector_store),
):
    """Answers a question about a project using RAG: hybrid retrieval (optionally limited to selected files), selected commits as priority context, LLM answer. Returns answer and sources.
    Why available: Main Q&A feature; answers are grounded in the indexed repository, commit history and meeting transcripts."""
    rate_limiter.check(request)
    _require_project(store, project_id)
    if req.top_k is not None and req.top_k <= 0:
        raise HTTPException(status_code=400, detail="top_k must be > 0")
    top_k = settings.retrieve_top_k if req.top_k is None else req.top_k

    try:
        hit, _ = detect_prompt_injection(req.question)
        if hit:
            raise HTTPException(status_code=400, detail="Query contains disallowed content.")

        result = answer_question(
            store,
            vector_store,
            project_id,
            req.question.strip(),
            file_context=req.file_context,
            commit_context=req.commit_context,
            top_k=top_k,
        )
        return ChatResponse(**result)

    except HTTPException:
        raise
    except Exception as e:
        raise as_http_error(e)
