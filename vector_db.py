"""
Vector database storage using Qdrant.
Holds the embedded medical reference corpus the chat endpoint draws on.

Every point carries a "namespace" payload field; searches are always scoped
to one namespace, so several corpora can share a collection.
"""

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from custom_types import RAGSearchResult
from data_loader import getEmbeddingDimension


class QdrantStorage:
    """Wrapper for interacting with Qdrant vector database."""

    def __init__(
        self,
        url="http://localhost:6333",
        collection="medic",
        namespace="ns1",
        embeddingModel="voyageai",
        apiKey=None,
        client: QdrantClient | None = None,
    ):
        """
        Connect to Qdrant and create collection if it doesn't exist.

        Args:
            url: Qdrant server URL
            collection: Base collection name; the embedding model is appended
            namespace: Logical partition inside the collection
            embeddingModel: Embedding model name (voyageai, openai, or gemini)
                           Determines collection name and vector dimensions
            apiKey: Qdrant Cloud API key, if any
            client: Pre-built client, mainly for tests
        """
        self.client = client or QdrantClient(url=url, api_key=apiKey, timeout=30)
        self.embeddingModel = embeddingModel
        self.namespace = namespace

        # Use model-specific collection to keep different embeddings separate
        self.collection = f"{collection}_{embeddingModel}"
        dim = getEmbeddingDimension(embeddingModel)

        if not self.client.collection_exists(self.collection):
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(
                    size=dim,  # Must match embedding dimension
                    distance=Distance.COSINE,
                ),
            )

    def _namespaceFilter(self) -> Filter:
        return Filter(
            must=[FieldCondition(key="namespace", match=MatchValue(value=self.namespace))]
        )

    def upsert(self, ids, vectors, payloads):
        """
        Insert or update vectors in the database, tagged with this namespace.
        """
        points = [
            PointStruct(
                id=ids[i],
                vector=vectors[i],
                payload={**payloads[i], "namespace": self.namespace},
            )
            for i in range(len(ids))
        ]
        self.client.upsert(self.collection, points=points)

    def search(self, queryVector, topK: int = 5) -> RAGSearchResult:
        """
        Find the reference chunks closest to the query, best match first.
        """
        results = self.client.query_points(
            collection_name=self.collection,
            query=queryVector,
            query_filter=self._namespaceFilter(),
            limit=topK,
            with_payload=True,
        )

        contexts = []
        sources = []

        for r in results.points:
            payload = getattr(r, "payload", None) or {}
            text = payload.get("text", "")
            source = payload.get("source", "")

            if text:
                contexts.append(text)
                if source and source not in sources:
                    sources.append(source)

        return RAGSearchResult(contexts=contexts, sources=sources)
