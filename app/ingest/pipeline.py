"""
Repository indexing pipeline: clone -> commit history -> enumerate files -> persist + chunk ->
replace the project's embeddings -> clean up. Returns a summary or a failure reason; never raises.
"""
import logging
import os
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.db.store import RelationalStore
from .chunker import split_text
from .classifier import (
    classify_content_category,
    collect_indexable_files,
    detect_language,
    is_binary,
    relative_posix_path,
)
from .indexer import ChunkDocument, SOURCE_REPOSITORY, VectorStore
from .progress import NullProgressSink, ProgressEvent, ProgressSink, ProgressStage
from .snapshot import CommitRecord, GitSnapshotExtractor
from .transcription import build_meeting_documents

logger = logging.getLogger(__name__)


@dataclass
class IndexingPayload:
    project_id: str
    repo_url: str


@dataclass
class IndexingResult:
    success: bool
    files_indexed: int = 0
    chunks_created: int = 0
    commits_indexed: int = 0
    summary: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class RepositoryIndexer:
    """(Re)populates a project's source files, commits and embedding chunks from its remote repository.
    Re-running for the same project converges to the same state: rows are upserted by natural key and
    the project's embeddings are replaced wholesale."""

    def __init__(
        self,
        store: RelationalStore,
        vector_store: VectorStore,
        *,
        snapshots: Optional[GitSnapshotExtractor] = None,
        progress: Optional[ProgressSink] = None,
        batch_size: Optional[int] = None,
        commit_limit: Optional[int] = None,
    ):
        self.store = store
        self.vector_store = vector_store
        self.snapshots = snapshots or GitSnapshotExtractor()
        self.progress = progress or NullProgressSink()
        self.batch_size = batch_size or settings.embedding_batch_size
        self.commit_limit = commit_limit or settings.commit_log_limit

    def _emit(self, project_id: str, stage: ProgressStage, progress: int, message: Optional[str] = None) -> None:
        try:
            self.progress.emit(project_id, ProgressEvent(status=stage.value, progress=progress, message=message))
        except Exception:
            logger.warning("progress_emit_failed", exc_info=True, extra={"project_id": project_id})

    def index_repository(self, project_id: str, repo_url: str) -> IndexingResult:
        started = time.perf_counter()
        repo_path = self.snapshots.snapshot_path(project_id)
        reached = 0

        def report(stage: ProgressStage, progress: int, message: Optional[str] = None) -> None:
            nonlocal reached
            reached = progress
            self._emit(project_id, stage, progress, message)

        logger.info("indexing_started", extra={"project_id": project_id, "repo_url": repo_url})
        try:
            report(ProgressStage.CLONING, 10)
            self.snapshots.clone(repo_url, repo_path)

            report(ProgressStage.PROCESSING, 30, "Reading commit history")
            commits = self.snapshots.commit_history(repo_path, self.commit_limit)
            commits_indexed = self._save_commits(project_id, commits)

            report(ProgressStage.SCANNING, 45)
            root = Path(repo_path).resolve()
            files = collect_indexable_files(root)

            report(ProgressStage.PROCESSING, 60, f"Processing {len(files)} files")
            documents: List[ChunkDocument] = []
            files_indexed = 0
            for file_path in files:
                try:
                    documents.extend(self._process_file(project_id, root, file_path))
                except Exception:
                    logger.exception("file_processing_failed", extra={"project_id": project_id, "file_path": str(file_path)})
                    continue
                files_indexed += 1
            # project-wide delete below also drops transcript chunks; rebuild them from stored meetings
            documents.extend(self._meeting_documents(project_id))

            report(ProgressStage.CLEARING_EMBEDDINGS, 80)
            self.vector_store.delete_project_embeddings(project_id)

            report(ProgressStage.CREATING_EMBEDDINGS, 90, f"Embedding {len(documents)} chunks")
            chunks_created = self.vector_store.add_documents(documents, batch_size=self.batch_size)

            report(ProgressStage.CLEANING, 95)
            self.snapshots.remove(repo_path)

            report(ProgressStage.COMPLETE, 100)
            summary = f"Indexed {files_indexed} files and {commits_indexed} commits"
            logger.info(
                "indexing_completed",
                extra={
                    "project_id": project_id,
                    "files_indexed": files_indexed,
                    "chunks_created": chunks_created,
                    "duration_s": round(time.perf_counter() - started, 2),
                },
            )
            return IndexingResult(
                success=True,
                files_indexed=files_indexed,
                chunks_created=chunks_created,
                commits_indexed=commits_indexed,
                summary=summary,
            )
        except Exception as e:
            logger.exception("indexing_failed", extra={"project_id": project_id})
            self.snapshots.remove(repo_path)
            error = str(e) or e.__class__.__name__
            self._emit(project_id, ProgressStage.ERROR, reached, error)
            return IndexingResult(success=False, error=error)

    def _save_commits(self, project_id: str, commits: List[CommitRecord]) -> int:
        for commit in commits:
            self.store.upsert_commit(
                project_id,
                commit_hash=commit.commit_hash,
                commit_author=commit.commit_author,
                commit_date=commit.commit_date,
                commit_message=commit.commit_message,
            )
        logger.info("commits_saved", extra={"project_id": project_id, "commits": len(commits)})
        return len(commits)

    def _meeting_documents(self, project_id: str) -> List[ChunkDocument]:
        documents: List[ChunkDocument] = []
        for meeting in self.store.list_meetings(project_id):
            if meeting.transcript and meeting.transcript.strip():
                documents.extend(build_meeting_documents(project_id, meeting.id, meeting.transcript, title=meeting.title))
        return documents

    def _process_file(self, project_id: str, root: Path, file_path: Path) -> List[ChunkDocument]:
        """Persist one file and return its chunk documents (none for binary or blank files)."""
        rel_path = relative_posix_path(root, file_path)
        content = Path(file_path).read_text(encoding="utf-8", errors="replace").replace("\x00", "")
        language = detect_language(file_path)

        self.store.upsert_source_file(
            project_id,
            file_path=rel_path,
            file_name=os.path.basename(str(file_path)),
            language=language,
            content=content,
        )

        if is_binary(file_path) or not content.strip():
            return []

        category = classify_content_category(file_path)
        return [
            ChunkDocument(
                text=chunk,
                project_id=project_id,
                file_path=rel_path,
                chunk_index=index,
                category=category,
                source=SOURCE_REPOSITORY,
                language=language,
            )
            for index, chunk in enumerate(split_text(content, category))
        ]
