"""
Application settings, read once from the environment.

Credentials have no bundled defaults: if GOOGLE_API_KEY is missing the
endpoints that need Gemini refuse to run instead of guessing.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the API server and the Streamlit client."""

    googleApiKey: str | None
    extractionModel: str
    chatModel: str
    chatTimeoutS: float

    qdrantUrl: str
    qdrantApiKey: str | None
    qdrantCollection: str
    qdrantNamespace: str
    embeddingModel: str
    topK: int

    maxUploadBytes: int
    imageQuality: float
    reportApiBase: str
    inngestApiBase: str

    logLevel: str
    logFormat: str

    @staticmethod
    def _optional(name: str) -> str | None:
        """Treat unset and blank variables the same way."""
        value = os.getenv(name, "").strip()
        return value or None

    @classmethod
    def from_env(cls) -> "Settings":
        maxUploadMb = float(os.getenv("MAX_UPLOAD_MB", "5"))
        return cls(
            googleApiKey=cls._optional("GOOGLE_API_KEY") or cls._optional("GEMINI_API_KEY"),
            extractionModel=os.getenv("EXTRACTION_MODEL", "gemini-2.5-flash"),
            chatModel=os.getenv("CHAT_MODEL", "gemini-2.5-pro"),
            chatTimeoutS=float(os.getenv("CHAT_TIMEOUT_S", "60")),
            qdrantUrl=os.getenv("QDRANT_URL", "http://localhost:6333"),
            qdrantApiKey=cls._optional("QDRANT_API_KEY"),
            qdrantCollection=os.getenv("QDRANT_COLLECTION", "medic"),
            qdrantNamespace=os.getenv("QDRANT_NAMESPACE", "ns1"),
            embeddingModel=os.getenv("EMBEDDING_MODEL", "voyageai"),
            topK=int(os.getenv("TOP_K", "5")),
            maxUploadBytes=int(maxUploadMb * 1024 * 1024),
            imageQuality=float(os.getenv("IMAGE_QUALITY", "0.7")),
            reportApiBase=os.getenv("REPORT_API_BASE", "http://127.0.0.1:8000").rstrip("/"),
            inngestApiBase=os.getenv("INNGEST_API_BASE", "http://127.0.0.1:8288"),
            logLevel=os.getenv("LOG_LEVEL", "INFO").upper(),
            logFormat=os.getenv(
                "LOG_FORMAT", "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
            ),
        )


@lru_cache(maxsize=1)
def getSettings() -> Settings:
    """Process-wide settings. Tests clear this with getSettings.cache_clear()."""
    return Settings.from_env()
