"""
Recursive character chunking: split on paragraphs, then lines, then spaces, then characters,
merging pieces back up to chunk_size with chunk_overlap characters carried between neighbours.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .classifier import CATEGORY_CODE, CATEGORY_DOCUMENTATION, CATEGORY_MEETING

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkConfig:
    chunk_size: int
    chunk_overlap: int


# Sizes in characters; code gets the largest window.
CHUNK_CONFIG: Dict[str, ChunkConfig] = {
    CATEGORY_CODE: ChunkConfig(chunk_size=1500, chunk_overlap=200),
    CATEGORY_DOCUMENTATION: ChunkConfig(chunk_size=1000, chunk_overlap=100),
    CATEGORY_MEETING: ChunkConfig(chunk_size=800, chunk_overlap=150),
}

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


class RecursiveTextSplitter:
    """Split text by trying separators in order of preference.
    Pieces shorter than chunk_size are merged greedily; a piece that is still too long is split again with the
    next separator. The empty separator splits into single characters, so every chunk fits unless
    chunk_size itself is smaller than one character."""

    def __init__(
        self,
        chunk_size: int,
        chunk_overlap: int,
        separators: Optional[Sequence[str]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators or DEFAULT_SEPARATORS)

    def split_text(self, text: str) -> List[str]:
        if not text or not text.strip():
            return []
        return self._split(text, self.separators)

    def _split(self, text: str, separators: List[str]) -> List[str]:
        final_chunks: List[str] = []

        separator = separators[-1]
        remaining: List[str] = []
        for i, sep in enumerate(separators):
            if sep == "":
                separator = sep
                break
            if sep in text:
                separator = sep
                remaining = separators[i + 1:]
                break

        good: List[str] = []
        for piece in _split_keep_separator(text, separator):
            if len(piece) < self.chunk_size:
                good.append(piece)
                continue
            if good:
                final_chunks.extend(self._merge(good))
                good = []
            if remaining:
                final_chunks.extend(self._split(piece, remaining))
            else:
                # single unbreakable token
                final_chunks.append(piece)
        if good:
            final_chunks.extend(self._merge(good))
        return final_chunks

    def _merge(self, pieces: List[str]) -> List[str]:
        """Join pieces into chunks no longer than chunk_size; the tail of each chunk (up to chunk_overlap
        characters) starts the next one."""
        chunks: List[str] = []
        current: List[str] = []
        total = 0
        for piece in pieces:
            length = len(piece)
            if total + length > self.chunk_size and current:
                doc = _join(current)
                if doc is not None:
                    chunks.append(doc)
                while total > self.chunk_overlap or (total + length > self.chunk_size and total > 0):
                    total -= len(current[0])
                    current = current[1:]
            current.append(piece)
            total += length
        doc = _join(current)
        if doc is not None:
            chunks.append(doc)
        return chunks


def _split_keep_separator(text: str, separator: str) -> List[str]:
    """Split on separator, keeping it at the start of the following piece so joins are lossless."""
    if not separator:
        return list(text)
    parts = re.split(f"({re.escape(separator)})", text)
    pieces = [parts[0]] + [parts[i] + parts[i + 1] for i in range(1, len(parts) - 1, 2)]
    return [p for p in pieces if p]


def _join(pieces: List[str]) -> Optional[str]:
    text = "".join(pieces).strip()
    return text or None


def get_splitter(category: str) -> RecursiveTextSplitter:
    config = CHUNK_CONFIG.get(category, CHUNK_CONFIG[CATEGORY_CODE])
    return RecursiveTextSplitter(chunk_size=config.chunk_size, chunk_overlap=config.chunk_overlap)


def split_text(content: str, category: str) -> List[str]:
    """Split content into overlapping chunks sized for its category (code / documentation / meeting).
    Empty or whitespace-only content yields an empty list.
    Why available: Used by the indexing pipeline per file and by the transcription pipeline for transcripts."""
    chunks = get_splitter(category).split_text(content)
    logger.debug("split_text", extra={"category": category, "chars": len(content or ""), "chunks": len(chunks)})
    return chunks
