from typing import Any, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.openai_client import complete
from app.db.store import RelationalStore
from app.ingest.indexer import VectorStore
from app.prompts.loader import get_system_prompt, get_user_prompt
from .context import format_commit_context, pack_context
from .retriever import dedupe_by_chunk, retrieve

NO_CONTEXT_ANSWER = "I could not find anything relevant to that question in this project."
SOURCE_PREVIEW_CHARS = 200


def build_prompt(question: str, context: str, commit_context: str = "") -> str:
    """Fill the code_chat user template. Selected commits go first so the model weighs them highest."""
    full_context = f"{commit_context}\n\n{context}".strip() if commit_context else context
    return (
        get_user_prompt("code_chat")
        .replace("<<CONTEXT>>", full_context)
        .replace("<<QUESTION>>", question)
    )


def to_sources(retrieved: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Shape retrieved chunks for the response: file path, category and the first 200 characters of text."""
    out = []
    for r in retrieved:
        text = r.get("text") or ""
        out.append(
            {
                "file_path": r.get("file_path"),
                "chunk_index": r.get("chunk_index"),
                "category": r.get("category"),
                "score": r.get("score", 0.0),
                "content": text[:SOURCE_PREVIEW_CHARS],
            }
        )
    return out


def answer_question(
    store: RelationalStore,
    vector_store: VectorStore,
    project_id: str,
    question: str,
    *,
    file_context: Optional[Sequence[str]] = None,
    commit_context: Optional[Sequence[str]] = None,
    top_k: Optional[int] = None,
) -> Dict[str, Any]:
    """Answer a question about a project: hybrid retrieval (optionally restricted to file_context paths), selected
    commits prepended as high-priority context, then one chat completion with the code_chat prompt.
    Returns {"answer", "sources"}. LLM and vector-store errors propagate to the route."""
    retrieved = dedupe_by_chunk(
        retrieve(vector_store, project_id, question, top_k or settings.retrieve_top_k, file_paths=file_context)
    )
    commits = store.get_commits(project_id, list(commit_context or []))
    commit_block = format_commit_context(commits)

    if not retrieved and not commit_block:
        return {"answer": NO_CONTEXT_ANSWER, "sources": []}

    prompt = build_prompt(question, pack_context(retrieved, max_chunks=len(retrieved) or 1), commit_block)
    answer = complete(prompt, system=get_system_prompt("code_chat"))
    return {"answer": answer.strip(), "sources": to_sources(retrieved)}
