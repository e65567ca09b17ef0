"""
Deterministic text chunking for source ingestion.

Each loaded document (a page, a CSV row, a whole text file) is split into
overlapping chunks that carry the document's metadata plus their position.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from django.conf import settings

logger = logging.getLogger(__name__)

# Default chunking parameters
DEFAULT_CHUNK_SIZE = 1000  # characters
DEFAULT_CHUNK_OVERLAP = 200  # characters of overlap between chunks
MIN_CHUNK_SIZE = 100  # Minimum size for final chunk

# Preferred break points, best first
_BREAK_PATTERNS = [
    r'\n\n',      # paragraph
    r'[.!?]\s',   # sentence
    r'[,;:]\s',   # clause
    r'\s',        # word
]


@dataclass
class SourceDocument:
    """A unit of loaded text (page, row, file) before chunking."""
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TextChunk:
    """A chunk of text with its position."""
    index: int
    text: str
    start_char: int
    end_char: int


@dataclass
class ChunkPayload:
    """Chunk text and metadata ready for embedding and storage."""
    text: str
    metadata: Dict[str, Any]


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace while keeping paragraph breaks.
    """
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = re.sub(r'\n\s*\n', '\n\n', text)
    text = re.sub(r'[^\S\n]+', ' ', text)
    text = '\n'.join(line.strip() for line in text.split('\n'))
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def find_break_point(text: str, target_pos: int, window: int = 100) -> int:
    """
    Find a natural break point near target_pos.

    Paragraph breaks win outright; otherwise the sentence, clause or word
    boundary closest to the target is used. Falls back to target_pos.
    """
    if target_pos >= len(text):
        return len(text)

    start = max(0, target_pos - window // 2)
    end = min(len(text), target_pos + window // 2)
    search_text = text[start:end]
    rel_target = target_pos - start

    for i, pattern in enumerate(_BREAK_PATTERNS):
        matches = list(re.finditer(pattern, search_text))
        if not matches:
            continue
        if i == 0:
            return start + matches[0].end()
        best = min(matches, key=lambda m: abs(m.end() - rel_target))
        return start + best.end()

    return target_pos


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[TextChunk]:
    """
    Split text into overlapping chunks.

    Same input always yields the same chunks. A short tail is merged into
    the previous chunk instead of becoming its own fragment.
    """
    text = normalize_whitespace(text)
    if not text:
        return []

    if len(text) <= chunk_size:
        return [TextChunk(index=0, text=text, start_char=0, end_char=len(text))]

    chunks: List[TextChunk] = []
    current_pos = 0

    while current_pos < len(text):
        end_pos = current_pos + chunk_size

        if end_pos >= len(text):
            tail = text[current_pos:].strip()
            if len(tail) >= MIN_CHUNK_SIZE or not chunks:
                chunks.append(TextChunk(len(chunks), tail, current_pos, len(text)))
            elif tail:
                prev = chunks[-1]
                chunks[-1] = TextChunk(prev.index, f"{prev.text} {tail}", prev.start_char, len(text))
            break

        break_pos = find_break_point(text, end_pos)
        piece = text[current_pos:break_pos].strip()
        if piece:
            chunks.append(TextChunk(len(chunks), piece, current_pos, break_pos))

        next_pos = break_pos - chunk_overlap
        # Always make forward progress
        if next_pos <= current_pos:
            next_pos = break_pos
        current_pos = next_pos

    return chunks


def split_documents(
    documents: List[SourceDocument],
    chunk_size: int = None,
    chunk_overlap: int = None,
) -> List[ChunkPayload]:
    """
    Chunk every document, copying its metadata onto each chunk.

    Args:
        documents: Loaded documents
        chunk_size: Override for settings.CHUNK_SIZE
        chunk_overlap: Override for settings.CHUNK_OVERLAP

    Returns:
        Flat list of chunk payloads in document order
    """
    size = chunk_size or getattr(settings, 'CHUNK_SIZE', DEFAULT_CHUNK_SIZE)
    overlap = chunk_overlap if chunk_overlap is not None else getattr(
        settings, 'CHUNK_OVERLAP', DEFAULT_CHUNK_OVERLAP
    )

    payloads = []
    for document in documents:
        for chunk in chunk_text(document.text, size, overlap):
            metadata = dict(document.metadata)
            metadata['chunkIndex'] = chunk.index
            payloads.append(ChunkPayload(text=chunk.text, metadata=metadata))

    logger.info(f"Split {len(documents)} documents into {len(payloads)} chunks")
    return payloads
