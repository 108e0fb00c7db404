"""
Tests for the app-level pieces of main.py: health check, request parsing
and the reference PDF ingestion job.
"""

import asyncio
import json
import uuid
from types import SimpleNamespace

import pydantic
import pytest
from fastapi.testclient import TestClient

import main
from custom_types import ChatRequest
from errors import BadRequest


class FakeStep:
    """Runs each Inngest step inline and records the step names."""

    def __init__(self):
        self.names: list[str] = []

    async def run(self, name, fn, output_type=None):
        self.names.append(name)
        return fn()


class FakeStorage:
    instances: list["FakeStorage"] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.upserts = []
        FakeStorage.instances.append(self)

    def upsert(self, ids, vectors, payloads):
        self.upserts.append((ids, vectors, payloads))


@pytest.fixture
def ingestFakes(monkeypatch):
    FakeStorage.instances = []
    embedded = []

    def fakeEmbed(texts, embeddingModel, inputType="document"):
        embedded.append((list(texts), embeddingModel, inputType))
        return [[float(i)] for i in range(len(texts))]

    monkeypatch.setattr(main, "loadAndChunkPdf", lambda path: ["Ferritin below 15 ng/mL", "MCV 70 fL"])
    monkeypatch.setattr(main, "embedTexts", fakeEmbed)
    monkeypatch.setattr(main, "QdrantStorage", FakeStorage)
    return embedded


def ingestContext(data: dict) -> SimpleNamespace:
    return SimpleNamespace(event=SimpleNamespace(data=data), step=FakeStep())


def test_health():
    resp = TestClient(main.app).get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestReadJson:
    class FakeRequest:
        def __init__(self, body: str):
            self.body = body

        async def json(self):
            return json.loads(self.body)

    def test_invalid_json_keeps_cause(self):
        with pytest.raises(BadRequest) as exc:
            asyncio.run(main._readJson(self.FakeRequest("{not json"), ChatRequest))
        assert isinstance(exc.value.__cause__, json.JSONDecodeError)

    def test_wrong_shape_keeps_cause(self):
        body = '{"messages": [{"role": "doctor", "content": "hi"}]}'
        with pytest.raises(BadRequest) as exc:
            asyncio.run(main._readJson(self.FakeRequest(body), ChatRequest))
        assert isinstance(exc.value.__cause__, pydantic.ValidationError)


class TestReferenceIngestion:
    def test_ingests_into_event_namespace(self, settings, ingestFakes):
        ctx = ingestContext({"pdfPath": "/refs/iron.pdf", "sourceId": "iron.pdf", "namespace": "guidelines"})

        result = asyncio.run(main.ingestReference(ctx, settings))

        assert result == {"ingested": 2}
        assert ctx.step.names == ["loadAndChunk", "embedAndUpsert"]
        assert ingestFakes == [(["Ferritin below 15 ng/mL", "MCV 70 fL"], settings.embeddingModel, "document")]

        storage = FakeStorage.instances[0]
        assert storage.kwargs["namespace"] == "guidelines"
        assert storage.kwargs["collection"] == settings.qdrantCollection
        ids, vectors, payloads = storage.upserts[0]
        assert ids == [
            str(uuid.uuid5(uuid.NAMESPACE_URL, f"guidelines:iron.pdf:{settings.embeddingModel}:{i}"))
            for i in range(2)
        ]
        assert vectors == [[0.0], [1.0]]
        assert payloads == [
            {"source": "iron.pdf", "text": "Ferritin below 15 ng/mL"},
            {"source": "iron.pdf", "text": "MCV 70 fL"},
        ]

    def test_defaults_to_configured_namespace_and_path_as_source(self, settings, ingestFakes):
        ctx = ingestContext({"pdfPath": "/refs/cbc.pdf"})

        asyncio.run(main.ingestReference(ctx, settings))

        storage = FakeStorage.instances[0]
        assert storage.kwargs["namespace"] == settings.qdrantNamespace
        assert storage.upserts[0][2][0]["source"] == "/refs/cbc.pdf"

    def test_point_ids_are_stable(self):
        first = main.referencePointIds("ns1", "iron.pdf", "voyageai", 3)
        assert first == main.referencePointIds("ns1", "iron.pdf", "voyageai", 3)
        assert len(set(first)) == 3
        assert first != main.referencePointIds("ns2", "iron.pdf", "voyageai", 3)
