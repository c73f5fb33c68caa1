"""
Relational store: the CRUD operations the pipelines and routes need, keyed by natural keys where
the indexer upserts (commits by project+hash, source files by project+path).
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from .models import Commit, Meeting, Project, SourceCode

logger = logging.getLogger(__name__)


class RelationalStore:
    """Thin repository over a SQLAlchemy sessionmaker. Every method runs in its own transaction."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._session_factory() as s, s.begin():
            yield s

    # -------------------------
    # Projects
    # -------------------------

    def create_project(self, name: str, github_url: str) -> Project:
        with self.session() as s:
            project = Project(name=name, github_url=github_url)
            s.add(project)
            s.flush()
            return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self.session() as s:
            return s.get(Project, project_id)

    def list_projects(self) -> List[Project]:
        with self.session() as s:
            return list(s.scalars(select(Project).order_by(Project.created_at.desc())))

    def delete_project(self, project_id: str) -> bool:
        """Delete a project with its commits, files and meetings. Returns False when it does not exist."""
        with self.session() as s:
            project = s.get(Project, project_id)
            if project is None:
                return False
            for model in (Commit, SourceCode, Meeting):
                s.execute(delete(model).where(model.project_id == project_id))
            s.delete(project)
            return True

    def count_project_records(self, project_id: str) -> Dict[str, int]:
        with self.session() as s:
            def count(model) -> int:
                return s.scalar(select(func.count()).select_from(model).where(model.project_id == project_id)) or 0

            return {
                "files": count(SourceCode),
                "commits": count(Commit),
                "meetings": count(Meeting),
            }

    # -------------------------
    # Commits
    # -------------------------

    def upsert_commit(
        self,
        project_id: str,
        commit_hash: str,
        commit_author: str,
        commit_date: Optional[datetime],
        commit_message: str,
    ) -> bool:
        """Insert or update the commit identified by (project_id, commit_hash). Returns True when inserted."""
        with self.session() as s:
            existing = s.scalar(
                select(Commit).where(Commit.project_id == project_id, Commit.commit_hash == commit_hash)
            )
            if existing is not None:
                existing.commit_author = commit_author
                existing.commit_date = commit_date
                existing.commit_message = commit_message
                return False
            s.add(
                Commit(
                    project_id=project_id,
                    commit_hash=commit_hash,
                    commit_author=commit_author,
                    commit_date=commit_date,
                    commit_message=commit_message,
                )
            )
            return True

    def list_commits(self, project_id: str, limit: Optional[int] = None) -> List[Commit]:
        with self.session() as s:
            stmt = (
                select(Commit)
                .where(Commit.project_id == project_id)
                .order_by(Commit.commit_date.desc())
            )
            if limit:
                stmt = stmt.limit(limit)
            return list(s.scalars(stmt))

    def get_commits(self, project_id: str, commit_ids: Sequence[str]) -> List[Commit]:
        """Commits of this project whose row id is in commit_ids (ids from other projects are ignored)."""
        if not commit_ids:
            return []
        with self.session() as s:
            stmt = select(Commit).where(Commit.project_id == project_id, Commit.id.in_(list(commit_ids)))
            return list(s.scalars(stmt))

    # -------------------------
    # Source files
    # -------------------------

    def upsert_source_file(
        self,
        project_id: str,
        file_path: str,
        file_name: str,
        language: str,
        content: str,
    ) -> bool:
        """Insert or update the file identified by (project_id, file_path). Returns True when inserted."""
        with self.session() as s:
            existing = s.scalar(
                select(SourceCode).where(SourceCode.project_id == project_id, SourceCode.file_path == file_path)
            )
            if existing is not None:
                existing.file_name = file_name
                existing.language = language
                existing.content = content
                return False
            s.add(
                SourceCode(
                    project_id=project_id,
                    file_path=file_path,
                    file_name=file_name,
                    language=language,
                    content=content,
                )
            )
            return True

    def list_source_files(self, project_id: str) -> List[SourceCode]:
        with self.session() as s:
            stmt = select(SourceCode).where(SourceCode.project_id == project_id).order_by(SourceCode.file_path)
            return list(s.scalars(stmt))

    def get_source_file(self, project_id: str, file_id: str) -> Optional[SourceCode]:
        with self.session() as s:
            row = s.get(SourceCode, file_id)
            if row is None or row.project_id != project_id:
                return None
            return row

    # -------------------------
    # Meetings
    # -------------------------

    def create_meeting(
        self,
        project_id: str,
        title: str,
        meeting_date: Optional[datetime] = None,
        audio_url: Optional[str] = None,
    ) -> Meeting:
        with self.session() as s:
            meeting = Meeting(project_id=project_id, title=title, audio_url=audio_url)
            if meeting_date is not None:
                meeting.meeting_date = meeting_date
            s.add(meeting)
            s.flush()
            return meeting

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        with self.session() as s:
            return s.get(Meeting, meeting_id)

    def list_meetings(self, project_id: str) -> List[Meeting]:
        with self.session() as s:
            stmt = select(Meeting).where(Meeting.project_id == project_id).order_by(Meeting.meeting_date.desc())
            return list(s.scalars(stmt))

    def update_meeting_transcript(self, meeting_id: str, transcript: str, summary: str) -> bool:
        """Store transcript and summary on a meeting. Returns False when the meeting does not exist."""
        with self.session() as s:
            meeting = s.get(Meeting, meeting_id)
            if meeting is None:
                return False
            meeting.transcript = transcript
            meeting.summary = summary
            return True

    def delete_meeting(self, project_id: str, meeting_id: str) -> bool:
        with self.session() as s:
            meeting = s.get(Meeting, meeting_id)
            if meeting is None or meeting.project_id != project_id:
                return False
            s.delete(meeting)
            return True
