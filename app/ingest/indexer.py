"""
Qdrant vector store for chunk documents: dense (OpenAI embeddings) + sparse (keyword) vectors per point,
batched inserts, per-project and per-file deletion, and hybrid similarity search with a short-lived cache.
"""
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from qdrant_client import QdrantClient
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    Fusion,
    FusionQuery,
    MatchAny,
    MatchValue,
    PointStruct,
    Prefetch,
    SparseVector,
    SparseVectorParams,
    VectorParams,
)

from app.core.config import settings
from app.core.openai_client import get_openai_client
from app.utils.retry import with_retry
from app.utils.sparse_encoding import text_to_sparse_indices_values

logger = logging.getLogger(__name__)

NAMESPACE = uuid.UUID("5f0b7c1e-2d4a-4c8e-9a61-3b7d2e9f4a10")
DENSE_VECTOR_NAME = "dense"
SPARSE_VECTOR_NAME = "sparse"
SOURCE_REPOSITORY = "repository"
SOURCE_MEETING = "meeting"


@dataclass
class ChunkDocument:
    """One retrievable chunk: text plus the metadata stored as the Qdrant payload."""

    text: str
    project_id: str
    file_path: str
    chunk_index: int
    category: str
    source: str = SOURCE_REPOSITORY
    language: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def chunk_id(self) -> str:
        return f"{self.project_id}:{self.file_path}:{self.chunk_index}"

    def payload(self) -> Dict[str, Any]:
        data = {
            "project_id": self.project_id,
            "file_path": self.file_path,
            "chunk_index": self.chunk_index,
            "chunk_id": self.chunk_id,
            "category": self.category,
            "source": self.source,
            "text": self.text,
        }
        if self.language:
            data["language"] = self.language
        data.update(self.extra)
        return data


def stable_point_id(chunk_id: str) -> str:
    """Return a deterministic UUID string for a chunk_id (for Qdrant point id).
    Why available: Qdrant requires UUID or integer ids; the same chunk always maps to the same point."""
    return str(uuid.uuid5(NAMESPACE, chunk_id))


def embed_texts(texts: List[str]) -> List[List[float]]:
    """Embed a list of texts into dense vectors using the configured embedding model (with retry)."""
    oc = get_openai_client()
    resp = with_retry(
        lambda: oc.embeddings.create(
            model=settings.embedding_model,
            input=texts,
        ),
        operation="embeddings",
    )
    return [d.embedding for d in resp.data]


def build_filter(conditions: Optional[Dict[str, Any]]) -> Optional[Filter]:
    """Turn {"project_id": "p1", "file_path": ["a.py", "b.py"]} into a Qdrant filter (exact match / match any)."""
    if not conditions:
        return None
    must = []
    for key, value in conditions.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            values = list(value)
            if not values:
                continue
            must.append(FieldCondition(key=key, match=MatchAny(any=values)))
        else:
            must.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=must) if must else None


class SearchCache:
    """TTL cache of search results keyed by (project, query, k, filter); cleared per project on writes."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple, Tuple[float, List[Dict[str, Any]]]] = {}

    @staticmethod
    def make_key(project_id: str, query: str, k: int, conditions: Optional[Dict[str, Any]]) -> Tuple:
        items = []
        for key, value in sorted((conditions or {}).items()):
            if isinstance(value, (list, tuple, set)):
                value = tuple(sorted(value))
            items.append((key, value))
        return (project_id, query, k, tuple(items))

    def get(self, key: Tuple) -> Optional[List[Dict[str, Any]]]:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            stored_at, results = hit
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return results

    def put(self, key: Tuple, results: List[Dict[str, Any]]) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), results)

    def clear_project(self, project_id: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == project_id]:
                del self._entries[key]


class VectorStore:
    """Embedding/vector-store collaborator used by the pipelines and chat."""

    def __init__(
        self,
        client: Optional[QdrantClient] = None,
        *,
        collection: Optional[str] = None,
        embed_fn: Callable[[List[str]], List[List[float]]] = embed_texts,
        batch_size: Optional[int] = None,
        cache_ttl_seconds: Optional[float] = None,
    ):
        self.client = client or QdrantClient(url=settings.qdrant_url)
        self.collection = collection or settings.qdrant_collection
        self.embed_fn = embed_fn
        self.batch_size = batch_size or settings.embedding_batch_size
        ttl = settings.search_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        self.cache = SearchCache(ttl)
        self._ensured = False

    def _collection_exists(self) -> bool:
        existing = [c.name for c in self.client.get_collections().collections]
        return self.collection in existing

    def ensure_collection(self, vector_size: int) -> None:
        """Create the collection if it does not exist (dense + sparse vectors)."""
        if self._ensured:
            return
        if not self._collection_exists():
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config={
                    DENSE_VECTOR_NAME: VectorParams(size=vector_size, distance=Distance.COSINE),
                },
                sparse_vectors_config={
                    SPARSE_VECTOR_NAME: SparseVectorParams(),
                },
            )
        self._ensured = True

    def _points(self, batch: List[ChunkDocument]) -> List[PointStruct]:
        vectors = self.embed_fn([d.text for d in batch])
        self.ensure_collection(len(vectors[0]))
        points: List[PointStruct] = []
        for doc, vector in zip(batch, vectors):
            named_vectors: Dict[str, Any] = {DENSE_VECTOR_NAME: vector}
            idx_sparse, val_sparse = text_to_sparse_indices_values(doc.text, mode="doc")
            if idx_sparse:
                named_vectors[SPARSE_VECTOR_NAME] = SparseVector(indices=idx_sparse, values=val_sparse)
            points.append(
                PointStruct(
                    id=stable_point_id(doc.chunk_id),
                    vector=named_vectors,
                    payload=doc.payload(),
                )
            )
        return points

    def add_documents(self, documents: Iterable[ChunkDocument], batch_size: Optional[int] = None) -> int:
        """Embed and upsert documents in fixed-size batches, in order. Returns the number of points written.
        A failing batch raises; batches before it stay written."""
        docs = list(documents)
        if not docs:
            return 0
        size = batch_size or self.batch_size
        total = 0
        for start in range(0, len(docs), size):
            batch = docs[start:start + size]
            self.client.upsert(collection_name=self.collection, points=self._points(batch), wait=True)
            total += len(batch)
            logger.info(
                "embedding_batch_added",
                extra={"batch": start // size + 1, "first": start + 1, "last": start + len(batch)},
            )
        for project_id in {d.project_id for d in docs}:
            self.cache.clear_project(project_id)
        return total

    def delete_project_embeddings(self, project_id: str) -> None:
        """Delete every point of a project. Errors propagate: a failed delete must not be followed by an insert."""
        self.cache.clear_project(project_id)
        if not self._collection_exists():
            return
        self.client.delete(
            collection_name=self.collection,
            points_selector=FilterSelector(filter=build_filter({"project_id": project_id})),
            wait=True,
        )
        logger.info("project_embeddings_deleted", extra={"project_id": project_id})

    def delete_file_embeddings(self, project_id: str, file_paths: Iterable[str]) -> int:
        """Delete points of the given files one file at a time; a failing file is logged and skipped.
        Returns how many files were deleted successfully."""
        self.cache.clear_project(project_id)
        if not self._collection_exists():
            return 0
        deleted = 0
        for file_path in file_paths:
            try:
                self.client.delete(
                    collection_name=self.collection,
                    points_selector=FilterSelector(
                        filter=build_filter({"project_id": project_id, "file_path": file_path})
                    ),
                    wait=True,
                )
                deleted += 1
            except Exception:
                logger.warning("file_embeddings_delete_failed", exc_info=True, extra={"file_path": file_path})
        return deleted

    def similarity_search(self, query: str, k: int, conditions: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Top-k chunks for query using dense + sparse fusion (RRF), restricted by exact-match conditions
        (at minimum project_id; file_path may be a list). Results are cached per project for a few minutes."""
        project_id = str((conditions or {}).get("project_id", ""))
        key = SearchCache.make_key(project_id, query, k, conditions)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if not self._collection_exists():
            return []

        qvec = self.embed_fn([query])[0]
        idx_sparse, val_sparse = text_to_sparse_indices_values(query, mode="query")
        qfilter = build_filter(conditions)
        prefetch_limit = max(k * 2, 20)
        prefetch = [Prefetch(query=qvec, using=DENSE_VECTOR_NAME, limit=prefetch_limit, filter=qfilter)]
        if idx_sparse:
            prefetch.append(
                Prefetch(
                    query=SparseVector(indices=idx_sparse, values=val_sparse),
                    using=SPARSE_VECTOR_NAME,
                    limit=prefetch_limit,
                    filter=qfilter,
                )
            )
        res = self.client.query_points(
            collection_name=self.collection,
            prefetch=prefetch,
            query=FusionQuery(fusion=Fusion.RRF),
            limit=k,
            with_payload=True,
            query_filter=qfilter,
        )
        results = [_point_to_result(p) for p in (res.points or [])]
        self.cache.put(key, results)
        return results


def _point_to_result(p) -> Dict[str, Any]:
    payload = p.payload or {}
    p_score = getattr(p, "score", None)
    return {
        "score": float(p_score) if p_score is not None else 0.0,
        "chunk_id": payload.get("chunk_id"),
        "project_id": payload.get("project_id"),
        "file_path": payload.get("file_path"),
        "chunk_index": payload.get("chunk_index"),
        "category": payload.get("category"),
        "source": payload.get("source"),
        "language": payload.get("language"),
        "text": payload.get("text", ""),
    }
