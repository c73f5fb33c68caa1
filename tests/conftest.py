import sys
import subprocess
from pathlib import Path
import json
import pytest

# Ensure repo root is on sys.path so `import app...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.db.base import init_db, make_engine, make_session_factory  # noqa: E402
from app.db.store import RelationalStore  # noqa: E402
from app.ingest.snapshot import GitSnapshotExtractor  # noqa: E402


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True, default=str)


class FakeVectorStore:
    """In-memory stand-in for VectorStore: records inserted batches and deletions, searches by substring."""

    def __init__(self, fail_delete: bool = False, fail_add: bool = False):
        self.docs = []
        self.batches = []
        self.deleted_projects = []
        self.deleted_files = []
        self.fail_delete = fail_delete
        self.fail_add = fail_add

    def add_documents(self, documents, batch_size=None):
        docs = list(documents)
        if self.fail_add:
            raise RuntimeError("vector store unavailable")
        size = batch_size or 50
        for start in range(0, len(docs), size):
            batch = docs[start:start + size]
            self.batches.append(batch)
            self.docs.extend(batch)
        return len(docs)

    def delete_project_embeddings(self, project_id):
        if self.fail_delete:
            raise RuntimeError("qdrant connection refused")
        self.deleted_projects.append(project_id)
        self.docs = [d for d in self.docs if d.project_id != project_id]

    def delete_file_embeddings(self, project_id, file_paths):
        paths = set(file_paths)
        self.deleted_files.extend(paths)
        self.docs = [d for d in self.docs if not (d.project_id == project_id and d.file_path in paths)]
        return len(paths)

    def similarity_search(self, query, k, conditions=None):
        conditions = conditions or {}
        out = []
        for d in self.docs:
            if conditions.get("project_id") and d.project_id != conditions["project_id"]:
                continue
            paths = conditions.get("file_path")
            if paths and d.file_path not in paths:
                continue
            words = [w for w in query.lower().split() if w]
            score = sum(1 for w in words if w in d.text.lower())
            if score:
                out.append({**d.payload(), "score": float(score)})
        out.sort(key=lambda r: r["score"], reverse=True)
        return out[:k]

    def for_project(self, project_id):
        return [d for d in self.docs if d.project_id == project_id]


def make_git_runner(files=None, log_output="", clone_error=None, log_error=False, calls=None):
    """Build a runner for GitSnapshotExtractor: `git clone` writes `files` ({relative path: str | bytes})
    into the target directory, `git log` returns log_output."""
    files = files or {}

    def runner(args, cwd=None):
        if calls is not None:
            calls.append(list(args))
        command = args[1]
        if command == "clone":
            if clone_error:
                raise subprocess.CalledProcessError(128, list(args), output="", stderr=f"fatal: {clone_error}")
            target = Path(args[-1])
            target.mkdir(parents=True, exist_ok=True)
            for rel, content in files.items():
                path = target / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                if isinstance(content, bytes):
                    path.write_bytes(content)
                else:
                    path.write_text(content, encoding="utf-8")
            return ""
        if command == "log":
            if log_error:
                raise subprocess.CalledProcessError(128, list(args), output="", stderr="fatal: bad default revision")
            return log_output
        raise AssertionError(f"unexpected command {args}")

    return runner


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    init_db(engine)
    return RelationalStore(make_session_factory(engine))


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def project(store):
    return store.create_project(name="demo", github_url="https://example.com/acme/demo.git")


@pytest.fixture
def snapshots_factory(tmp_path):
    def factory(**runner_kwargs):
        return GitSnapshotExtractor(str(tmp_path / "repos"), git_binary="git", runner=make_git_runner(**runner_kwargs))

    return factory


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      request_log = {"method": "...", "url": "...", "json": {...}}
      response_log = {"status_code": 200, "json": {...}}
      item._api_logs = [{"title": "...", "request": ..., "response": ...}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    # Only attach if pytest-html is installed/enabled
    extras = getattr(rep, "extras", [])

    try:
        from pytest_html import extras as html_extras
    except ImportError:
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        req = entry.get("request", {})
        res = entry.get("response", {})

        html = f"""
        <div style="font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, 'Liberation Mono', monospace;">
          <h4 style="margin:8px 0;">{title}</h4>

          <details style="margin:6px 0;">
            <summary><b>Request</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(req)}</pre>
          </details>

          <details style="margin:6px 0;">
            <summary><b>Response</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(res)}</pre>
          </details>
        </div>
        """
        extras.append(html_extras.html(html))

    rep.extras = extras
