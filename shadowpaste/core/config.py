"""Environment-driven settings."""

import os
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()

DEFAULT_DB_PATH = os.path.expanduser("~/.shadowpaste/shadowpaste.db")


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and a .env file)."""

    db_path: str = DEFAULT_DB_PATH

    embedding_provider: str = "fastembed"
    text_embedding_model: str = "Qdrant/clip-ViT-B-32-text"
    image_embedding_model: str = "Qdrant/clip-ViT-B-32-vision"
    document_prefix: str = ""
    query_prefix: str = ""
    embedding_dimension: int = 512

    # Some platforms notify before the new content is committed to the
    # clipboard store; this delay narrows that race but does not close it.
    settle_delay_ms: int = 50
    poll_interval_ms: int = 250
    verify_retries: int = 2
    verify_backoff_ms: int = 20

    # Empirically calibrated against CLIP-style shared spaces, where text-to-image
    # cosine scores run about an order of magnitude below text-to-text ones.
    # Re-tune when swapping the embedding model.
    image_similarity_scale: float = 10.0
    # Must exceed the largest possible semantic score of a non-matching entry.
    text_match_bonus: float = 2.0

    query_cache_size: int = Field(default=256, ge=1)
    query_cache_ttl: int = Field(default=3600, ge=0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.path.expanduser(
                os.getenv("SHADOWPASTE_DB_PATH", DEFAULT_DB_PATH)
            ),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", "fastembed").lower(),
            text_embedding_model=os.getenv(
                "TEXT_EMBEDDING_MODEL", "Qdrant/clip-ViT-B-32-text"
            ),
            image_embedding_model=os.getenv(
                "IMAGE_EMBEDDING_MODEL", "Qdrant/clip-ViT-B-32-vision"
            ),
            document_prefix=os.getenv("EMBEDDING_DOCUMENT_PREFIX", ""),
            query_prefix=os.getenv("EMBEDDING_QUERY_PREFIX", ""),
            embedding_dimension=int(os.getenv("EMBEDDING_DIMENSION", "512")),
            settle_delay_ms=int(os.getenv("CLIPBOARD_SETTLE_DELAY_MS", "50")),
            poll_interval_ms=int(os.getenv("CLIPBOARD_POLL_INTERVAL_MS", "250")),
            verify_retries=int(os.getenv("CLIPBOARD_VERIFY_RETRIES", "2")),
            verify_backoff_ms=int(os.getenv("CLIPBOARD_VERIFY_BACKOFF_MS", "20")),
            image_similarity_scale=float(os.getenv("IMAGE_SIMILARITY_SCALE", "10.0")),
            text_match_bonus=float(os.getenv("TEXT_MATCH_BONUS", "2.0")),
            query_cache_size=int(os.getenv("QUERY_CACHE_SIZE", "256")),
            query_cache_ttl=int(os.getenv("QUERY_CACHE_TTL", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
