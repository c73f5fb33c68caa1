"""
Keyword side of hybrid search. Source text and chat questions are tokenized the same way,
identifiers are also split into their camelCase / snake_case parts, and tokens are hashed
into a fixed number of buckets so chunk and query vectors are comparable.
"""
import math
import re
import zlib
from collections import Counter
from typing import Dict, List, Tuple

SPARSE_DIM = 2**18

_WORD_RE = re.compile(r"\b\w+\b")
_PART_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")

# Language keywords that appear in nearly every chunk carry no signal.
_NOISE = frozenset(
    {"the", "a", "an", "and", "or", "of", "to", "in", "is", "it",
     "def", "self", "return", "import", "from", "const", "let", "var", "function"}
)


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens plus the parts of compound identifiers (getUserName -> get, user, name)."""
    out: List[str] = []
    for word in _WORD_RE.findall(text or ""):
        parts = _PART_RE.findall(word)
        candidates = [word] + (parts if len(parts) > 1 else [])
        out.extend(c.lower() for c in candidates if c.lower() not in _NOISE)
    return out


def _bucket(token: str) -> int:
    # crc32 rather than hash(): must match across processes
    return zlib.crc32(token.encode("utf-8")) % SPARSE_DIM


def _bucket_counts(tokens: List[str]) -> Dict[int, int]:
    return dict(Counter(_bucket(t) for t in tokens))


def text_to_sparse_indices_values(text: str, mode: str = "doc") -> Tuple[List[int], List[float]]:
    """Sparse vector (sorted indices, values) for a chunk (mode="doc") or a question (mode="query").
    Documents weight each bucket 1 + log(tf); queries weight each distinct bucket 1.0.
    Why available: Indexing and retrieval share one encoding so keyword matches line up."""
    counts = _bucket_counts(tokenize(text))
    if not counts:
        return [], []
    indices = sorted(counts)
    if mode == "query":
        return indices, [1.0] * len(indices)
    return indices, [1.0 + math.log(counts[i]) for i in indices]
