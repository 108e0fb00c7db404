"""
Clinical report extraction with a Gemini vision model.

The client sends the report as a data URI. It is validated here, step by
step, before any call to Gemini is made.
"""

import base64
import binascii
import re

from google import genai
from google.genai import types

from config import Settings
from custom_types import InlineDataPayload
from errors import (
    EmptyResponse,
    InvalidPayload,
    MalformedPayload,
    ServiceUnavailable,
    UnsupportedMediaType,
    UpstreamError,
)
from logger import getLogger

log = getLogger("extract")

EXTRACTION_PROMPT = (
    "Analyze this clinical report and extract all important medical information "
    "like patient details, test results, units, reference ranges, and give a brief "
    "summary of abnormalities."
)

_MIME_PATTERN = re.compile(r":(.*?);")


def parseDataUri(payload: str | None) -> InlineDataPayload:
    """
    Validate a data URI of the form data:<mime>;base64,<data>.

    Only image media types are accepted; a well-formed PDF is still rejected.
    """
    if not payload or not payload.startswith("data:"):
        raise InvalidPayload("Invalid or missing base64 image data.")

    header, sep, data = payload.partition(",")
    if not sep or not header or not data:
        raise MalformedPayload("Malformed base64 data.")
    try:
        base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayload("Malformed base64 data.") from e

    mimeMatch = _MIME_PATTERN.search(header)
    mimeType = mimeMatch.group(1) if mimeMatch else None
    log.info("MIME type received: %s", mimeType)

    if not mimeType or not mimeType.startswith("image/"):
        raise UnsupportedMediaType(
            "Only image MIME types are supported (e.g., image/jpeg, image/png)"
        )

    return InlineDataPayload(data=data, mimeType=mimeType)


class ReportExtractor:
    """Sends one report image to Gemini and returns the extracted text."""

    def __init__(self, settings: Settings, client: genai.Client | None = None):
        self.model = settings.extractionModel
        self._apiKey = settings.googleApiKey
        self._client = client

    def _getClient(self) -> genai.Client:
        if self._client is None:
            if not self._apiKey:
                raise ServiceUnavailable(
                    "GOOGLE_API_KEY is not set in environment variables"
                )
            self._client = genai.Client(api_key=self._apiKey)
        return self._client

    async def extract(self, image: InlineDataPayload) -> str:
        client = self._getClient()

        filePart = types.Part.from_bytes(data=image.decode(), mime_type=image.mimeType)
        contents = [
            types.Content(
                role="user",
                parts=[types.Part.from_text(text=EXTRACTION_PROMPT), filePart],
            )
        ]

        try:
            response = await client.aio.models.generate_content(
                model=self.model, contents=contents
            )
        except Exception as e:
            log.error("Gemini extraction call failed: %s", e)
            raise UpstreamError("Report analysis failed at the model provider.") from e

        text = response.text or ""
        log.info("Gemini returned %d characters for %s", len(text), image.mimeType)

        if not text.strip():
            raise EmptyResponse("Empty response from Gemini API")
        return text
