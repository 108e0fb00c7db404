"""
Handles reference PDF loading and text embedding.
Supports multiple embedding providers: Voyage AI, OpenAI, and Gemini.

The same provider must be used for ingesting the medical reference corpus
and for embedding chat queries, otherwise the vectors are not comparable.
"""

import os
from functools import lru_cache
from typing import Literal

from openai import OpenAI
import voyageai
from google import genai
from google.genai import types
from llama_index.readers.file import PDFReader
from llama_index.core.node_parser import SentenceSplitter

from config import getSettings

# Embedding model configurations
EMBEDDING_MODELS = {
    "voyageai": {"model": "voyage-3", "dim": 1024},
    "openai": {"model": "text-embedding-3-large", "dim": 3072},
    "gemini": {"model": "gemini-embedding-001", "dim": 768},
}

InputType = Literal["document", "query"]


@lru_cache(maxsize=1)
def getSplitter() -> SentenceSplitter:
    # chunkOverlap helps maintain context between chunks
    return SentenceSplitter(chunk_size=1000, chunk_overlap=250)


def getEmbeddingDimension(embeddingModel: str) -> int:
    """Get the vector dimension for a given embedding model."""
    if embeddingModel not in EMBEDDING_MODELS:
        raise ValueError(f"Unknown embedding model: {embeddingModel}")
    return EMBEDDING_MODELS[embeddingModel]["dim"]


def loadAndChunkPdf(path: str) -> list[str]:
    """
    Load a reference PDF and split it into chunks.
    Smaller chunks work better for embedding and retrieval.
    """
    docs = PDFReader().load_data(file=path)
    texts = [d.text for d in docs if getattr(d, "text", None)]

    chunks = []
    for t in texts:
        chunks.extend(getSplitter().split_text(t))

    return chunks


def embedTexts(
    texts: list[str],
    embeddingModel: str = "voyageai",
    inputType: InputType = "document",
) -> list[list[float]]:
    """
    Convert text into vector embeddings.

    Args:
        texts: List of text strings to embed
        embeddingModel: One of "voyageai", "openai", or "gemini"
        inputType: "document" when indexing references, "query" for chat lookups.
                   Voyage and Gemini embed the two sides differently.

    Returns:
        List of embedding vectors
    """
    if embeddingModel == "voyageai":
        vo = voyageai.Client(api_key=os.getenv("VOYAGE_API_KEY"))
        model = EMBEDDING_MODELS["voyageai"]["model"]
        result = vo.embed(texts, model=model, input_type=inputType)
        return result.embeddings

    elif embeddingModel == "openai":
        client = OpenAI()
        model = EMBEDDING_MODELS["openai"]["model"]
        response = client.embeddings.create(model=model, input=texts)
        return [item.embedding for item in response.data]

    elif embeddingModel == "gemini":
        client = genai.Client(api_key=getSettings().googleApiKey)
        model = EMBEDDING_MODELS["gemini"]["model"]
        taskType = "RETRIEVAL_QUERY" if inputType == "query" else "RETRIEVAL_DOCUMENT"
        result = client.models.embed_content(
            model=model,
            contents=texts,
            config=types.EmbedContentConfig(
                task_type=taskType,
                output_dimensionality=EMBEDDING_MODELS["gemini"]["dim"],
            ),
        )
        return [e.values for e in result.embeddings]

    else:
        raise ValueError(f"Unknown embedding model: {embeddingModel}")
