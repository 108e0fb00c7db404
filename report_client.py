"""
Client-side report handling, independent of the UI toolkit.

The Streamlit page only renders a ReportSession and calls its transitions;
everything that decides what may happen next lives here so it can be tested
without a browser.

Lifecycle:
    IDLE → FILE_SELECTED → (NORMALIZING) → ENCODED → EXTRACTING → EXTRACTED/FAILED → CONFIRMED
clear() returns to IDLE from anywhere.
"""

import io
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePath
from typing import BinaryIO, Callable, Iterator

import requests
from PIL import Image, UnidentifiedImageError

from custom_types import ChatMessage, InlineDataPayload
from errors import (
    ChatFailed,
    DecodeError,
    ExtractionFailed,
    ExtractionInProgress,
    FileTooLarge,
    InvalidTransition,
    ReadError,
    UnsupportedFileType,
)
from logger import getLogger

log = getLogger("client")

SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
SUPPORTED_DOC_TYPES = ("application/pdf",)
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_QUALITY = 0.7


@dataclass(frozen=True)
class UploadedFile:
    name: str
    mimeType: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def isImage(self) -> bool:
        return self.mimeType in SUPPORTED_IMAGE_TYPES


def readUpload(fileobj: BinaryIO, name: str, mimeType: str, declaredSize: int | None = None) -> UploadedFile:
    """Read an uploaded file completely. A short or failing read raises ReadError."""
    try:
        data = fileobj.read()
    except OSError as e:
        raise ReadError(f"Error reading file {name}: {e}") from e

    if declaredSize is not None and len(data) != declaredSize:
        raise ReadError(
            f"Error reading file {name}: got {len(data)} of {declaredSize} bytes"
        )
    return UploadedFile(name=name, mimeType=mimeType, data=data)


def normalizeImage(data: bytes, quality: float = DEFAULT_QUALITY) -> bytes:
    """
    Re-encode an image as JPEG at the given quality (0-1) to bound upload size.

    Pixel dimensions are kept. Transparent areas are flattened onto white.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                rgb = Image.new("RGB", rgba.size, (255, 255, 255))
                rgb.paste(rgba, mask=rgba.getchannel("A"))
            else:
                rgb = img.convert("RGB")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Error processing image: {e}") from e

    out = io.BytesIO()
    rgb.save(out, format="JPEG", quality=max(1, min(95, round(quality * 100))))
    return out.getvalue()


def normalizeUpload(upload: UploadedFile, quality: float = DEFAULT_QUALITY) -> UploadedFile:
    """Normalized copy of an image upload; the original is left untouched."""
    jpeg = normalizeImage(upload.data, quality)
    return UploadedFile(name=PurePath(upload.name).stem + ".jpg", mimeType="image/jpeg", data=jpeg)


def encodeFile(upload: UploadedFile) -> InlineDataPayload:
    return InlineDataPayload.fromBytes(upload.data, upload.mimeType)


class ReportState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    NORMALIZING = "normalizing"
    ENCODED = "encoded"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FAILED = "failed"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class ReportSession:
    """Immutable snapshot of the report panel. Every transition returns a new session."""

    state: ReportState = ReportState.IDLE
    upload: UploadedFile | None = None
    payload: InlineDataPayload | None = None
    result: str = ""
    error: str | None = None
    maxBytes: int = DEFAULT_MAX_BYTES

    def _require(self, *states: ReportState, action: str) -> None:
        if self.state not in states:
            raise InvalidTransition(f"Cannot {action} while {self.state.value}")

    @property
    def busy(self) -> bool:
        return self.state == ReportState.EXTRACTING

    @property
    def canExtract(self) -> bool:
        return self.payload is not None and self.state in (ReportState.ENCODED, ReportState.FAILED)

    @property
    def reportContext(self) -> str | None:
        """Text to send with chat requests; only set once the user confirmed it."""
        return self.result if self.state == ReportState.CONFIRMED else None

    def selectFile(self, upload: UploadedFile) -> "ReportSession":
        if self.state == ReportState.EXTRACTING:
            raise ExtractionInProgress("Wait for the current analysis to finish")
        self._require(
            ReportState.IDLE,
            ReportState.FILE_SELECTED,
            ReportState.ENCODED,
            ReportState.EXTRACTED,
            ReportState.FAILED,
            action="select a new file",
        )

        if upload.size > self.maxBytes:
            maxMb = self.maxBytes / (1024 * 1024)
            raise FileTooLarge(f"File size too large (max {maxMb:g}MB)")
        if upload.mimeType not in SUPPORTED_IMAGE_TYPES + SUPPORTED_DOC_TYPES:
            raise UnsupportedFileType(
                "Please upload one of these formats: JPEG, PNG, WebP, or PDF"
            )

        return ReportSession(state=ReportState.FILE_SELECTED, upload=upload, maxBytes=self.maxBytes)

    def beginNormalizing(self) -> "ReportSession":
        self._require(ReportState.FILE_SELECTED, action="normalize")
        if not self.upload.isImage:
            raise InvalidTransition("Only images are normalized")
        return replace(self, state=ReportState.NORMALIZING)

    def encoded(self, payload: InlineDataPayload) -> "ReportSession":
        self._require(ReportState.FILE_SELECTED, ReportState.NORMALIZING, action="store an encoded file")
        return replace(self, state=ReportState.ENCODED, payload=payload, error=None)

    def failed(self, message: str) -> "ReportSession":
        return replace(self, state=ReportState.FAILED, error=message)

    def prepare(self, quality: float = DEFAULT_QUALITY) -> "ReportSession":
        """Normalize (images only) and encode the selected file."""
        session = self
        try:
            if self.upload.isImage:
                session = self.beginNormalizing()
                toSend = normalizeUpload(self.upload, quality)
            else:
                toSend = self.upload
            return session.encoded(encodeFile(toSend))
        except (DecodeError, ReadError) as e:
            log.warning("Could not prepare %s: %s", self.upload.name, e)
            return session.failed(str(e))

    def startExtraction(self) -> "ReportSession":
        if self.state == ReportState.EXTRACTING:
            raise ExtractionInProgress("An analysis is already running")
        if not self.canExtract:
            raise InvalidTransition("Please upload a report file first")
        return replace(self, state=ReportState.EXTRACTING, error=None)

    def extractionSucceeded(self, text: str) -> "ReportSession":
        self._require(ReportState.EXTRACTING, action="accept a result")
        if not text or not text.strip():
            return self.failed("Received empty analysis from server")
        return replace(self, state=ReportState.EXTRACTED, result=text, error=None)

    def extractionFailed(self, message: str) -> "ReportSession":
        self._require(ReportState.EXTRACTING, action="record a failure")
        return self.failed(message)

    def editResult(self, text: str) -> "ReportSession":
        self._require(ReportState.EXTRACTED, action="edit the summary")
        return replace(self, result=text)

    def confirm(self) -> "ReportSession":
        self._require(ReportState.EXTRACTED, action="confirm")
        if not self.result.strip():
            raise InvalidTransition("Nothing to confirm")
        return replace(self, state=ReportState.CONFIRMED)

    def clear(self) -> "ReportSession":
        return ReportSession(maxBytes=self.maxBytes)


class ReportApiClient:
    """HTTP client for the extraction and chat endpoints."""

    def __init__(self, baseUrl: str, timeout: float = 120.0, session: requests.Session | None = None):
        self.baseUrl = baseUrl.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def extract(self, payload: InlineDataPayload) -> str:
        try:
            resp = self.http.post(
                f"{self.baseUrl}/api/extractreportgemini",
                json={"base64": payload.toDataUri()},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExtractionFailed(f"Could not reach the analysis service: {e}") from e

        if not resp.ok:
            raise ExtractionFailed(
                _errorMessage(resp) or f"Server responded with {resp.status_code}",
                resp.status_code,
            )

        result = _jsonField(resp, "result")
        if not isinstance(result, str):
            raise ExtractionFailed("Received empty analysis from server", resp.status_code)
        return result

    def streamChat(self, messages: list[ChatMessage], reportContext: str | None = None) -> Iterator[str]:
        """Yield answer text as it arrives. The connection is released when iteration stops."""
        body = {"messages": [m.model_dump() for m in messages]}
        if reportContext:
            body["data"] = {"reportData": reportContext}

        with self.http.post(
            f"{self.baseUrl}/api/medichatgemini",
            json=body,
            stream=True,
            timeout=self.timeout,
        ) as resp:
            if not resp.ok:
                raise ChatFailed(
                    _errorMessage(resp) or f"Server responded with {resp.status_code}",
                    resp.status_code,
                )
            resp.encoding = resp.encoding or "utf-8"
            for text in resp.iter_content(chunk_size=None, decode_unicode=True):
                if text:
                    yield text


def _jsonField(resp: requests.Response, key: str):
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get(key) if isinstance(body, dict) else None


def _errorMessage(resp: requests.Response) -> str | None:
    message = _jsonField(resp, "error")
    return message if isinstance(message, str) else None


def runExtraction(
    session: ReportSession,
    client: ReportApiClient,
    onChange: Callable[[ReportSession], None] | None = None,
) -> ReportSession:
    """
    Run one extraction round trip. The returned session is EXTRACTED or FAILED,
    never left EXTRACTING.

    onChange receives the EXTRACTING session before the request goes out and
    the final session afterwards, even if the call is interrupted, so a UI
    that stores it blocks duplicate submissions while the call is running.
    """
    publish = onChange or (lambda s: None)
    session = session.startExtraction()
    publish(session)

    final = session.extractionFailed("Analysis was interrupted")
    try:
        text = client.extract(session.payload)
        final = session.extractionSucceeded(text)
    except ExtractionFailed as e:
        log.error("Extraction error: %s", e)
        final = session.extractionFailed(str(e))
    finally:
        publish(final)
    return final
