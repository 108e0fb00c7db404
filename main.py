"""
Medical report API.

Endpoints:
1. POST /api/extractreportgemini: report image (data URI) → extracted text via Gemini vision
2. POST /api/medichatgemini: chat messages + confirmed report → streamed, reference-backed answer
3. /api/inngest: background ingestion of medical reference PDFs into Qdrant
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache

import inngest
import inngest.fast_api
import pydantic
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from config import Settings, getSettings
from custom_types import (
    ChatErrorResponse,
    ChatRequest,
    ErrorResponse,
    ExtractReportRequest,
    ExtractReportResponse,
    RAGChunkAndSrc,
    RAGUpsertResult,
)
from data_loader import embedTexts, loadAndChunkPdf
from errors import BadRequest, ReportChatError, ValidationError
from logger import getLogger
from medichat import (
    MedicalChatModel,
    MedicalRetriever,
    Retriever,
    buildMedicalPrompt,
    buildRetrievalQuery,
    latestQuestion,
    streamAnswer,
)
from report_extractor import ReportExtractor, parseDataUri
from vector_db import QdrantStorage

log = getLogger("api")


@lru_cache(maxsize=1)
def getReportExtractor() -> ReportExtractor:
    return ReportExtractor(getSettings())


@lru_cache(maxsize=1)
def getRetriever() -> Retriever:
    return MedicalRetriever(getSettings())


@lru_cache(maxsize=1)
def getChatModel() -> MedicalChatModel:
    return MedicalChatModel(getSettings())


async def _readJson(request: Request, model: type[pydantic.BaseModel]):
    """Parse the body into model; any shape problem becomes a BadRequest."""
    try:
        return model.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BadRequest("Request body must be valid JSON.") from e
    except pydantic.ValidationError as e:
        raise BadRequest(f"Invalid request body: {e.errors()[0].get('msg', 'invalid value')}") from e


def _nowIso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extractionError(message: str, status: int) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status)


def chatError(message: str, status: int) -> JSONResponse:
    body = ChatErrorResponse(error=message, timestamp=_nowIso())
    return JSONResponse(body.model_dump(), status_code=status, headers={"X-Error": "true"})


app = FastAPI(title="Medical Report Chat API")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/extractreportgemini", response_model=ExtractReportResponse)
async def extractReport(
    request: Request,
    extractor: ReportExtractor = Depends(getReportExtractor),
):
    """Extract structured medical information from a report image."""
    try:
        body = await _readJson(request, ExtractReportRequest)
        image = parseDataUri(body.base64)
        result = await extractor.extract(image)
    except ReportChatError as e:
        log.warning("Extraction rejected (%d): %s", e.statusCode, e.message)
        return extractionError(e.message, e.statusCode)
    except Exception:
        log.exception("Unexpected error during report extraction")
        return extractionError("Internal server error", 500)

    return ExtractReportResponse(result=result)


@app.post("/api/medichatgemini")
async def mediChat(
    request: Request,
    retriever: Retriever = Depends(getRetriever),
    chatModel: MedicalChatModel = Depends(getChatModel),
):
    """Answer the latest question using the report and the reference corpus."""
    try:
        body = await _readJson(request, ChatRequest)
        question = latestQuestion(body.messages)
        chatModel.ensureConfigured()
        reportData = body.reportData
        log.info(
            "Chat request: %d messages, report context %d chars",
            len(body.messages),
            len(reportData),
        )

        # Retrieval is sequential: the prompt depends on it
        query = buildRetrievalQuery(reportData, question)
        found = await run_in_threadpool(retriever.retrieve, query)

        prompt = buildMedicalPrompt(reportData, question, found)
        stream = await chatModel.openStream(prompt)
    except ReportChatError as e:
        status = e.statusCode if isinstance(e, ValidationError) else 500
        log.error("API processing error: %s", e.message)
        return chatError(e.message, status)
    except Exception:
        log.exception("API processing error")
        return chatError("Internal server error", 500)

    return StreamingResponse(
        streamAnswer(stream),
        media_type="text/plain; charset=utf-8",
        headers={"X-Stream-Data": "true"},
    )


# Inngest handles background jobs with automatic retries and step-based execution
inngestClient = inngest.Inngest(
    app_id="medireport",
    logger=logging.getLogger("uvicorn"),
    is_production=False,
    serializer=inngest.PydanticSerializer(),
)


def loadReference(eventData: dict) -> RAGChunkAndSrc:
    """Step 1: Load and chunk the PDF."""
    pdfPath = eventData["pdfPath"]
    sourceId = eventData.get("sourceId", pdfPath)
    return RAGChunkAndSrc(chunks=loadAndChunkPdf(pdfPath), sourceId=sourceId)


def referencePointIds(namespace: str, sourceId: str, embeddingModel: str, count: int) -> list[str]:
    # UUID5 is deterministic - re-ingesting a PDF overwrites its points
    return [
        str(uuid.uuid5(uuid.NAMESPACE_URL, f"{namespace}:{sourceId}:{embeddingModel}:{i}"))
        for i in range(count)
    ]


def upsertReference(chunksAndSrc: RAGChunkAndSrc, namespace: str, settings: Settings) -> RAGUpsertResult:
    """Step 2: Embed and store in Qdrant."""
    chunks = chunksAndSrc.chunks
    sourceId = chunksAndSrc.sourceId
    vecs = embedTexts(chunks, settings.embeddingModel, inputType="document")

    ids = referencePointIds(namespace, sourceId, settings.embeddingModel, len(chunks))
    payloads = [{"source": sourceId, "text": chunk} for chunk in chunks]

    QdrantStorage(
        url=settings.qdrantUrl,
        collection=settings.qdrantCollection,
        namespace=namespace,
        embeddingModel=settings.embeddingModel,
        apiKey=settings.qdrantApiKey,
    ).upsert(ids, vecs, payloads)
    return RAGUpsertResult(ingested=len(chunks))


async def ingestReference(ctx: inngest.Context, settings: Settings) -> dict:
    """Load, embed and store one reference PDF as two retryable steps."""
    namespace = ctx.event.data.get("namespace", settings.qdrantNamespace)

    chunksAndSrc = await ctx.step.run(
        "loadAndChunk", lambda: loadReference(ctx.event.data), output_type=RAGChunkAndSrc
    )
    ingested = await ctx.step.run(
        "embedAndUpsert",
        lambda: upsertReference(chunksAndSrc, namespace, settings),
        output_type=RAGUpsertResult,
    )
    return ingested.model_dump()


@inngestClient.create_function(
    fn_id="Medic: Ingest Reference PDF",
    trigger=inngest.TriggerEvent(event="medic/ingestReference"),
)
async def ingestReferencePdf(ctx: inngest.Context):
    """
    Add a medical reference PDF to the chat's knowledge base.
    Triggered by sending event: {"name": "medic/ingestReference", "data": {"pdfPath": "...", "namespace": "..."}}
    """
    return await ingestReference(ctx, getSettings())


# Register Inngest functions - creates /api/inngest endpoint
inngest.fast_api.serve(app, inngestClient, [ingestReferencePdf])
