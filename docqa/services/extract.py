from typing import Protocol

import chardet

from ..errors import ValidationError


class TextExtractor(Protocol):
    async def extract(self, filename: str, content: bytes) -> str: ...


class PlainTextExtractor:
    """Decodes text-like uploads. Binary formats need a dedicated extractor."""

    BINARY_SUFFIXES = (".pdf", ".docx", ".doc", ".xlsx", ".pptx", ".zip")

    async def extract(self, filename: str, content: bytes) -> str:
        name = (filename or "").lower()
        if name.endswith(self.BINARY_SUFFIXES):
            raise ValidationError(f"Unsupported file type for {filename}; upload extracted plain text instead")
        enc = chardet.detect(content).get("encoding") or "utf-8"
        try:
            return content.decode(enc, errors="ignore")
        except LookupError:
            return content.decode("utf-8", errors="ignore")


def get_extractor() -> TextExtractor:
    """FastAPI dependency; override to plug in another extractor."""
    return PlainTextExtractor()
