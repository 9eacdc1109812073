"""Embedding service: text and image vectors in one shared space."""

import asyncio
import base64
import hashlib
import io
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import litellm
import numpy as np
from PIL import Image

from shadowpaste.core.config import Settings
from shadowpaste.core.content import DATA_URI_PREFIX, decode_data_uri
from shadowpaste.core.errors import EmbeddingUnavailableError
from shadowpaste.models.schemas import ClipboardContent, ImageContent, TextContent

logger = logging.getLogger(__name__)

Embedding = List[float]

LOADING = "loading"
READY = "ready"
FAILED = "failed"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for zero-norm or mismatched vectors."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        logger.debug(f"Similarity over mismatched dimensions {va.shape} vs {vb.shape}")
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / (norm_a * norm_b)


class EmbeddingProvider(ABC):
    """Model backend producing equal-length vectors for text and images."""

    name = "provider"

    @abstractmethod
    def load(self) -> None:
        """Load or download model weights; slow, raises on failure."""

    @abstractmethod
    def embed_text(self, text: str) -> Embedding:
        pass

    @abstractmethod
    def embed_image(self, image_bytes: bytes) -> Embedding:
        pass


class FastEmbedProvider(EmbeddingProvider):
    """Local ONNX models through fastembed."""

    name = "fastembed"

    def __init__(self, text_model: str, image_model: str):
        self.text_model_name = text_model
        self.image_model_name = image_model
        self.text_model = None
        self.image_model = None

    def load(self) -> None:
        from fastembed import ImageEmbedding, TextEmbedding

        self.text_model = TextEmbedding(model_name=self.text_model_name)
        self.image_model = ImageEmbedding(model_name=self.image_model_name)

    def embed_text(self, text: str) -> Embedding:
        vectors = list(self.text_model.embed([text]))
        if not vectors:
            raise ValueError("No embedding returned")
        return vectors[0].tolist()

    def embed_image(self, image_bytes: bytes) -> Embedding:
        image = Image.open(io.BytesIO(image_bytes))
        vectors = list(self.image_model.embed([image]))
        if not vectors:
            raise ValueError("No embedding returned")
        return vectors[0].tolist()


class LiteLLMProvider(EmbeddingProvider):
    """Any embedding endpoint reachable through LiteLLM.

    Images are sent as PNG data URIs, which multimodal embedding models
    (e.g. ``cohere/embed-v4.0``, ``vertex_ai/multimodalembedding``) accept.
    """

    name = "litellm"

    def __init__(self, text_model: str, image_model: str):
        self.text_model = text_model
        self.image_model = image_model

    def load(self) -> None:
        # Fail fast on an unusable endpoint instead of on the first copy
        self.embed_text("ping")

    def embed_text(self, text: str) -> Embedding:
        response = litellm.embedding(model=self.text_model, input=[text])
        return list(response.data[0]["embedding"])

    def embed_image(self, image_bytes: bytes) -> Embedding:
        uri = DATA_URI_PREFIX + base64.b64encode(image_bytes).decode("ascii")
        response = litellm.embedding(model=self.image_model, input=[uri])
        return list(response.data[0]["embedding"])


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic md5-derived vectors; offline and test use only."""

    name = "hash"

    def __init__(self, dimension: int = 512):
        self.dimension = dimension

    def load(self) -> None:
        pass

    def embed_text(self, text: str) -> Embedding:
        return self._from_bytes(text.encode("utf-8"))

    def embed_image(self, image_bytes: bytes) -> Embedding:
        return self._from_bytes(image_bytes)

    def _from_bytes(self, data: bytes) -> Embedding:
        hash_bytes = hashlib.md5(data).digest()
        # Normalize to [-1, 1] range
        return [
            (hash_bytes[i % len(hash_bytes)] - 128) / 128.0
            for i in range(self.dimension)
        ]


def build_provider(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_provider == "fastembed":
        return FastEmbedProvider(
            settings.text_embedding_model, settings.image_embedding_model
        )
    if settings.embedding_provider == "litellm":
        return LiteLLMProvider(
            settings.text_embedding_model, settings.image_embedding_model
        )
    if settings.embedding_provider == "hash":
        return HashEmbeddingProvider(settings.embedding_dimension)
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")


class EmbeddingService:
    """Readiness-aware, lock-guarded access to an embedding provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        document_prefix: str = "",
        query_prefix: str = "",
    ):
        self.provider = provider
        self.document_prefix = document_prefix
        self.query_prefix = query_prefix

        self.state = LOADING
        self.status_message = "Loading embedding models..."
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingService":
        return cls(
            build_provider(settings),
            document_prefix=settings.document_prefix,
            query_prefix=settings.query_prefix,
        )

    @property
    def ready(self) -> bool:
        return self.state == READY

    def load(self) -> bool:
        """Load the models once; a failure leaves the service unready for good."""
        with self._lock:
            if self.state != LOADING:
                return self.ready
            try:
                self.provider.load()
            except Exception as e:
                self.state = FAILED
                self.status_message = f"Failed to load models: {e}"
                logger.error(self.status_message)
                return False

            self.state = READY
            self.status_message = "Ready"
            logger.info(f"Embedding models loaded ({self.provider.name})")
            return True

    async def start(self) -> bool:
        return await asyncio.to_thread(self.load)

    def embed_document(self, text: str) -> Embedding:
        return self._embed_text(f"{self.document_prefix}{text}")

    def embed_query(self, text: str) -> Embedding:
        return self._embed_text(f"{self.query_prefix}{text}")

    def embed_image(self, image_bytes: bytes) -> Embedding:
        self._require_ready()
        with self._lock:
            return self.provider.embed_image(image_bytes)

    def _embed_text(self, text: str) -> Embedding:
        self._require_ready()
        with self._lock:
            return self.provider.embed_text(text)

    def _require_ready(self) -> None:
        if not self.ready:
            raise EmbeddingUnavailableError(self.status_message)

    similarity = staticmethod(cosine_similarity)

    def embed_content(self, content: ClipboardContent) -> Optional[Embedding]:
        """Vector for stored content, or None when unavailable or not applicable."""
        if not self.ready:
            return None

        try:
            if isinstance(content, TextContent):
                return self.embed_document(content.text)
            if isinstance(content, ImageContent):
                image_bytes = decode_data_uri(content.uri)
                if image_bytes is None:
                    return None
                return self.embed_image(image_bytes)
            return None
        except Exception as e:
            logger.warning(f"Embedding generation failed, storing without vector: {e}")
            return None

    def try_embed_query(self, text: str) -> Optional[Embedding]:
        if not self.ready:
            return None
        try:
            return self.embed_query(text)
        except Exception as e:
            logger.warning(f"Query embedding failed: {e}")
            return None

    async def aembed_content(self, content: ClipboardContent) -> Optional[Embedding]:
        return await asyncio.to_thread(self.embed_content, content)

    async def aembed_query(self, text: str) -> Optional[Embedding]:
        return await asyncio.to_thread(self.try_embed_query, text)

    def get_status(self) -> dict:
        return {
            "state": self.state,
            "message": self.status_message,
            "provider": self.provider.name,
        }
