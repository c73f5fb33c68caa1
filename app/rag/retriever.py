from typing import Any, Dict, List, Optional, Sequence

from app.ingest.indexer import VectorStore


def retrieve(
    vector_store: VectorStore,
    project_id: str,
    question: str,
    top_k: int,
    file_paths: Optional[Sequence[str]] = None,
) -> List[Dict[str, Any]]:
    """Retrieve top_k chunks of a project for a question using dense + sparse fusion (RRF). If file_paths is set, only chunks of those files are returned.
    Why available: Core retrieval used by /projects/{id}/chat; the project filter keeps projects isolated from each other."""
    conditions: Dict[str, Any] = {"project_id": project_id}
    paths = [p for p in (file_paths or []) if p]
    if paths:
        conditions["file_path"] = sorted(set(paths))
    return vector_store.similarity_search(question, k=top_k, conditions=conditions)


def dedupe_by_chunk(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop repeated chunk_ids, keeping the first (highest ranked) occurrence."""
    seen = set()
    out: List[Dict[str, Any]] = []
    for r in results:
        cid = r.get("chunk_id")
        if cid and cid in seen:
            continue
        seen.add(cid)
        out.append(r)
    return out
