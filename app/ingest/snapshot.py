"""
Repository snapshots: clone a remote repository into a project-scoped temp directory, read its
bounded commit history, and remove the directory afterwards.
"""
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from app.core.config import settings
from .errors import CloneError

logger = logging.getLogger(__name__)

# hash|author|email|date|subject; the subject may itself contain "|"
COMMIT_LOG_FORMAT = "%H|%an|%ae|%ad|%s"
FIELD_SEPARATOR = "|"

CommandRunner = Callable[[Sequence[str], Optional[str]], str]


@dataclass
class CommitRecord:
    commit_hash: str
    commit_author: str
    commit_email: str
    commit_date: Optional[datetime]
    commit_message: str


def run_command(args: Sequence[str], cwd: Optional[str] = None) -> str:
    """Run a command and return stdout; raises subprocess.CalledProcessError on non-zero exit."""
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    proc = subprocess.run(
        list(args),
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=True,
    )
    return proc.stdout


def parse_commit_date(raw: str) -> Optional[datetime]:
    """Parse git's --date=iso output ("2024-01-15 10:30:00 +0100"); None when unparseable."""
    raw = (raw or "").strip()
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def parse_commit_log(output: str) -> List[CommitRecord]:
    """Parse `git log --pretty=format:%H|%an|%ae|%ad|%s` output into commit records.
    Lines with fewer than five fields are skipped; extra separators belong to the message and are re-joined.
    Why available: Commit messages routinely contain "|"; splitting naively would truncate them."""
    commits: List[CommitRecord] = []
    for line in (output or "").splitlines():
        if not line.strip():
            continue
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) < 5:
            continue
        commit_hash, author, email, date = parts[0].strip(), parts[1], parts[2], parts[3]
        if not commit_hash:
            continue
        commits.append(
            CommitRecord(
                commit_hash=commit_hash,
                commit_author=author,
                commit_email=email,
                commit_date=parse_commit_date(date),
                commit_message=FIELD_SEPARATOR.join(parts[4:]),
            )
        )
    return commits


def _error_text(e: BaseException) -> str:
    if isinstance(e, subprocess.CalledProcessError):
        detail = (e.stderr or e.stdout or "").strip()
        if detail:
            return detail.splitlines()[-1]
        return f"command exited with status {e.returncode}"
    return str(e) or e.__class__.__name__


class GitSnapshotExtractor:
    """Owns the local working copy of one repository for the duration of an indexing run."""

    def __init__(
        self,
        repos_root: Optional[str] = None,
        *,
        git_binary: Optional[str] = None,
        runner: CommandRunner = run_command,
    ):
        self.repos_root = repos_root or settings.repos_root
        self.git_binary = git_binary or settings.git_binary
        self.runner = runner

    def snapshot_path(self, project_id: str) -> str:
        """Deterministic local path for a project's snapshot."""
        safe = os.path.basename(str(project_id).strip()) or "_"
        return os.path.join(self.repos_root, safe)

    def clone(self, repo_url: str, target_path: str) -> None:
        """Remove any stale snapshot at target_path, then clone repo_url into it. Raises CloneError."""
        if not repo_url or repo_url.startswith("-"):
            raise CloneError(f"Invalid repository URL: {repo_url!r}")
        self.remove(target_path)
        os.makedirs(os.path.dirname(target_path), exist_ok=True)
        logger.info("cloning_repository", extra={"repo_url": repo_url, "target": target_path})
        try:
            self.runner([self.git_binary, "clone", "--", repo_url, target_path], None)
        except (subprocess.CalledProcessError, OSError) as e:
            raise CloneError(f"Failed to clone {repo_url}: {_error_text(e)}") from e

    def commit_history(self, repo_path: str, limit: Optional[int] = None) -> List[CommitRecord]:
        """Return up to limit most recent commits. A failing git log is treated as no commits."""
        limit = limit or settings.commit_log_limit
        try:
            output = self.runner(
                [self.git_binary, "log", "-n", str(limit), "--date=iso", f"--pretty=format:{COMMIT_LOG_FORMAT}"],
                repo_path,
            )
        except (subprocess.CalledProcessError, OSError) as e:
            logger.warning("commit_log_failed", extra={"repo_path": repo_path, "error": _error_text(e)})
            return []
        commits = parse_commit_log(output)
        if not commits:
            logger.warning("no_commits_found", extra={"repo_path": repo_path})
        return commits[:limit]

    def remove(self, path: str) -> bool:
        """Recursively delete a snapshot directory. Best-effort: returns False and logs on failure."""
        if not os.path.exists(path):
            return True
        try:
            shutil.rmtree(path)
            return True
        except OSError:
            logger.warning("snapshot_cleanup_failed", exc_info=True, extra={"path": path})
            return False
