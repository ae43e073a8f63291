from typing import List

from ..errors import ValidationError

def validate_chunk_params(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ValidationError(f"chunkSize must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValidationError(f"overlap must be in [0, chunkSize), got {overlap} for chunkSize {chunk_size}")

def chunk_text(text: str, chunk_size: int, overlap: int = 0) -> List[str]:
    """Split text into fixed-size character windows.

    Windows start every ``chunk_size - overlap`` characters, so neighbours share
    ``overlap`` characters, and one starts at every stride offset inside the
    text: ``ceil(len(text) / (chunk_size - overlap))`` chunks. Text no longer
    than ``chunk_size`` is a single chunk.
    """
    validate_chunk_params(chunk_size, overlap)
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]
    stride = chunk_size - overlap
    return [text[start:start + chunk_size] for start in range(0, len(text), stride)]

def excerpt(text: str, limit: int = 200) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
