"""Data models for the shadowpaste clipboard history."""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TextContent(BaseModel):
    """Plain text copied to the clipboard."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    @property
    def payload(self) -> str:
        return self.text


class ImageContent(BaseModel):
    """Raster image, held as a self-contained data URI."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["image"] = "image"
    uri: str

    @property
    def payload(self) -> str:
        return self.uri


class EmptyContent(BaseModel):
    """Nothing usable on the clipboard, or the payload failed to decode."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"

    @property
    def payload(self) -> str:
        return ""


ClipboardContent = Annotated[
    Union[TextContent, ImageContent, EmptyContent], Field(discriminator="kind")
]

EMPTY = EmptyContent()


def content_from_parts(kind: str, payload: str) -> Union[TextContent, ImageContent, EmptyContent]:
    """Rebuild a content variant from its storage tag and payload."""
    if kind == "text":
        return TextContent(text=payload)
    if kind == "image":
        return ImageContent(uri=payload)
    return EMPTY


class Entry(BaseModel):
    """One captured clipboard item."""

    id: int = 0
    content: ClipboardContent
    captured_at: datetime
    embedding: Optional[List[float]] = None

    @property
    def persisted(self) -> bool:
        return self.id != 0


class SearchResult(BaseModel):
    """Ranked entry with its raw (unscaled) embedding similarity."""

    entry: Entry
    similarity: float = 0.0
    score: float = 0.0
    text_match: bool = False
