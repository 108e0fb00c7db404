"""
Data models for the report extraction and chat API.
These Pydantic classes provide type safety and validation.
"""

import base64
from typing import Literal

import pydantic


class InlineDataPayload(pydantic.BaseModel):
    """Base64 bytes plus their media type, small enough to travel inside JSON."""
    data: str
    mimeType: str

    def toDataUri(self) -> str:
        return f"data:{self.mimeType};base64,{self.data}"

    def decode(self) -> bytes:
        """Raw bytes. Raises binascii.Error if data is not valid base64."""
        return base64.b64decode(self.data, validate=True)

    @classmethod
    def fromBytes(cls, raw: bytes, mimeType: str) -> "InlineDataPayload":
        return cls(data=base64.b64encode(raw).decode("ascii"), mimeType=mimeType)


class ExtractReportRequest(pydantic.BaseModel):
    """Body of the extraction endpoint; base64 holds a data URI."""
    base64: str | None = None


class ExtractReportResponse(pydantic.BaseModel):
    result: str


class ErrorResponse(pydantic.BaseModel):
    error: str


class ChatMessage(pydantic.BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatData(pydantic.BaseModel):
    """Extra data the chat UI sends along; reportData is the confirmed report."""
    reportData: str = ""


class ChatRequest(pydantic.BaseModel):
    messages: list[ChatMessage] = pydantic.Field(default_factory=list)
    data: ChatData | None = None

    @property
    def reportData(self) -> str:
        return self.data.reportData if self.data else ""


class ChatErrorResponse(pydantic.BaseModel):
    success: bool = False
    error: str
    timestamp: str


class RAGChunkAndSrc(pydantic.BaseModel):
    """Text chunks from a reference PDF with their source identifier."""
    chunks: list[str]
    sourceId: str | None = None


class RAGUpsertResult(pydantic.BaseModel):
    """Result after adding reference chunks to the vector database."""
    ingested: int


class RAGSearchResult(pydantic.BaseModel):
    """Reference snippets found for a chat question."""
    contexts: list[str] = pydantic.Field(default_factory=list)  # The actual text chunks found
    sources: list[str] = pydantic.Field(default_factory=list)   # Where they came from
    degraded: bool = False  # True when the vector store could not be queried

