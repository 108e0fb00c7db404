"""
Retrieval-augmented chat about a confirmed clinical report.

Flow for one request:
1. Take the latest user message as the question
2. Search the medical reference corpus (best effort, never fatal)
3. Assemble one prompt from report, question and references
4. Stream Gemini's answer back as plain text
"""

from typing import AsyncIterator, Protocol

from google import genai
from google.genai import types

from config import Settings
from custom_types import ChatMessage, RAGSearchResult
from data_loader import embedTexts
from errors import BadRequest, ServiceUnavailable, StreamError, UpstreamError
from logger import getLogger
from vector_db import QdrantStorage

log = getLogger("chat")

NO_REPORT = "No report provided"
NO_REFERENCES = "No additional references found"
RETRIEVAL_FAILED = "Could not retrieve medical references"

INSTRUCTIONS = [
    "Analyze the patient report carefully",
    "Incorporate ONLY relevant findings from medical knowledge",
    "Provide a detailed, clinically accurate response",
    "Cite sources when applicable",
    "If unsure, state limitations clearly",
]


class Retriever(Protocol):
    def retrieve(self, query: str) -> RAGSearchResult: ...


def latestQuestion(messages: list[ChatMessage]) -> str:
    if not messages:
        raise BadRequest("At least one message is required.")
    return messages[-1].content


def buildRetrievalQuery(reportData: str, question: str) -> str:
    return (
        f"Patient medical context: {reportData}\n\n"
        f"User question: {question}\n\n"
        "Find relevant medical information:"
    )


def formatReferences(found: RAGSearchResult) -> str:
    if found.degraded:
        return RETRIEVAL_FAILED
    if not found.contexts:
        return NO_REFERENCES
    return "\n".join(f"- {c}" for c in found.contexts)


def buildMedicalPrompt(reportData: str, question: str, found: RAGSearchResult) -> str:
    """Deterministic prompt: same inputs, same text."""
    instructions = "\n".join(f"{i}. {line}" for i, line in enumerate(INSTRUCTIONS, start=1))
    return (
        "**Medical Consultation System**\n\n"
        "### Patient Report Summary:\n"
        f"{reportData or NO_REPORT}\n\n"
        "### User Question:\n"
        f"{question}\n\n"
        "### Relevant Medical Knowledge:\n"
        f"{formatReferences(found)}\n\n"
        "### Instructions:\n"
        f"{instructions}\n\n"
        "### Response:\n"
    )


class MedicalRetriever:
    """Looks up reference snippets in Qdrant. Failures degrade to an empty result."""

    def __init__(self, settings: Settings, storage: QdrantStorage | None = None):
        self.settings = settings
        self._storage = storage

    def _getStorage(self) -> QdrantStorage:
        if self._storage is None:
            self._storage = QdrantStorage(
                url=self.settings.qdrantUrl,
                collection=self.settings.qdrantCollection,
                namespace=self.settings.qdrantNamespace,
                embeddingModel=self.settings.embeddingModel,
                apiKey=self.settings.qdrantApiKey,
            )
        return self._storage

    def retrieve(self, query: str) -> RAGSearchResult:
        try:
            queryVec = embedTexts([query], self.settings.embeddingModel, inputType="query")[0]
            found = self._getStorage().search(queryVec, self.settings.topK)
        except Exception as e:
            log.warning("Reference search failed, answering without references: %s", e)
            return RAGSearchResult(degraded=True)

        log.info("Retrieved %d reference snippets", len(found.contexts))
        return found


class MedicalChatModel:
    """Streams Gemini completions for an assembled prompt."""

    def __init__(self, settings: Settings, client: genai.Client | None = None):
        self.model = settings.chatModel
        self._apiKey = settings.googleApiKey
        self._timeoutMs = int(settings.chatTimeoutS * 1000)
        self._client = client

    def _getClient(self) -> genai.Client:
        if self._client is None:
            if not self._apiKey:
                raise ServiceUnavailable(
                    "GOOGLE_API_KEY is not set in environment variables"
                )
            self._client = genai.Client(
                api_key=self._apiKey,
                http_options=types.HttpOptions(timeout=self._timeoutMs),
            )
        return self._client

    def ensureConfigured(self) -> None:
        """Fail closed before any other work when no credential is configured."""
        self._getClient()

    async def openStream(self, prompt: str) -> "PrefetchedStream":
        """
        Start generation and wait for the first chunk.

        The SDK sends the request lazily: provider errors only surface on the
        first read, and they must surface before the response status is sent.
        """
        client = self._getClient()
        try:
            stream = await client.aio.models.generate_content_stream(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    safety_settings=[
                        types.SafetySetting(
                            category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
                            threshold=types.HarmBlockThreshold.BLOCK_NONE,
                        )
                    ]
                ),
            )
        except Exception as e:
            log.error("Gemini chat request failed: %s", e)
            raise UpstreamError("The model could not start an answer.") from e

        try:
            first = await anext(stream)
        except StopAsyncIteration:
            first = None
        except Exception as e:
            log.error("Gemini chat request failed: %s", e)
            await _closeStream(stream)
            raise UpstreamError("The model could not start an answer.") from e
        return PrefetchedStream(stream, first)


class PrefetchedStream:
    """Model stream whose first chunk has already been received."""

    def __init__(self, stream, first: types.GenerateContentResponse | None):
        self._stream = stream
        self._pending = [] if first is None else [first]

    def __aiter__(self):
        return self

    async def __anext__(self) -> types.GenerateContentResponse:
        if self._pending:
            return self._pending.pop()
        return await anext(self._stream)

    async def aclose(self) -> None:
        await _closeStream(self._stream)


async def _closeStream(stream) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        log.debug("Closing model stream raised: %s", e)


async def streamAnswer(stream: AsyncIterator[types.GenerateContentResponse]) -> AsyncIterator[str]:
    """
    Forward model text chunks as they arrive.

    The model stream is closed exactly once: after the last chunk, after a
    model-side error (the output simply ends), or when the caller goes away
    mid-answer, which also stops generation upstream.
    """
    try:
        async for chunk in stream:
            if chunk.text:
                yield chunk.text
        log.info("Stream completed")
    except Exception as e:
        err = StreamError(f"Model stream failed: {e}")
        log.error("Stream error: %s", err.message)
    finally:
        await _closeStream(stream)
