from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    """Request body for POST /projects. Why available: Registers a project pointing at a remote git repository."""

    name: str = Field(..., min_length=1)
    github_url: str = Field(..., min_length=1, description="Remote repository URL passed to git clone")


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    github_url: str
    created_at: datetime


class IndexQueuedResponse(BaseModel):
    """Response for POST /projects/{id}/index. Why available: Clients poll /jobs/{job_id} with job_id until done."""

    job_id: str
    status: str = "queued"
    message: str = "Indexing started"


class IndexStatusResponse(BaseModel):
    """Response for GET /projects/{id}/index: what has been stored for the project so far."""

    project_id: str
    status: str = Field(..., description="completed once any file or commit is stored, otherwise pending")
    files: int = 0
    commits: int = 0
    meetings: int = 0


class ProgressResponse(BaseModel):
    project_id: str
    status: str
    progress: int
    message: Optional[str] = None
    timestamp: Optional[float] = None


class JobStatusResponse(BaseModel):
    """Response for GET /jobs/{job_id}: job state and result or error. Why available: Lets clients know when indexing or transcription finished or failed."""

    job_id: str
    type: str
    status: str
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class MeetingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    title: str
    meeting_date: datetime
    audio_url: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    status: str = Field("processing", description="completed once a transcript is stored")


class MeetingUploadResponse(BaseModel):
    """Response for POST /projects/{id}/meetings/upload: the created meeting and its transcription job."""

    meeting: MeetingOut
    job_id: str
    message: str = "Meeting uploaded, transcription queued"


class CommitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    commit_hash: str
    commit_author: str
    commit_date: Optional[datetime] = None
    commit_message: str


class SourceFileSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    file_name: str
    file_path: str
    language: str


class SourceFileOut(SourceFileSummary):
    content: str


class ChatRequest(BaseModel):
    """Request body for POST /projects/{id}/chat. Why available: Carries the question plus optional file paths and commit ids to focus on."""

    question: str = Field(..., min_length=1)
    file_context: List[str] = Field(default_factory=list, description="Restrict retrieval to these project-relative file paths")
    commit_context: List[str] = Field(default_factory=list, description="Commit ids prepended as high-priority context")
    top_k: Optional[int] = Field(None, description="Override retrieval top_k (defaults to config)")


class ChatSource(BaseModel):
    file_path: Optional[str] = None
    chunk_index: Optional[int] = None
    category: Optional[str] = None
    score: float = 0.0
    content: str = Field("", description="First 200 characters of the retrieved chunk")


class ChatResponse(BaseModel):
    """Response for chat: answer text and the chunks it was grounded on."""

    answer: str
    sources: List[ChatSource] = Field(default_factory=list)


class LimitsResponse(BaseModel):
    """Response for GET /limits: API limits (upload size, formats, retrieval, rate limit). Why available: Lets clients enforce limits before upload/chat."""

    max_audio_mb: int = Field(..., description="Max meeting upload size in MB")
    allowed_audio_formats: List[str]
    retrieve_top_k: int = Field(..., description="Default retrieval top_k")
    embedding_batch_size: int
    commit_log_limit: int
    rate_limit_requests: int = Field(..., description="Rate limit requests per window")
    rate_limit_window_seconds: int = Field(..., description="Rate limit window in seconds")
