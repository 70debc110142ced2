"""
Image bank configuration.
All settings are read from the environment with safe defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Object storage (bank.json + bank.index live under BANK_PREFIX)
BANK_STORAGE_DIR = os.getenv("BANK_STORAGE_DIR", "./data/bank")
BANK_PREFIX = os.getenv("BANK_PREFIX", "bank/")
BANK_PUBLIC_URL = os.getenv("BANK_PUBLIC_URL")  # Optional CDN base for mirrored renditions
BANK_MIRROR_IMAGES = os.getenv("BANK_MIRROR_IMAGES", "true").lower() == "true"

# Similarity thresholds
BANK_MIN_SCORE = float(os.getenv("BANK_MIN_SCORE", "0.88"))
BANK_CONFIDENT_SCORE = float(os.getenv("BANK_CONFIDENT_SCORE", "0.90"))

# Vector system configuration
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "faiss")  # faiss|memory
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence_transformers|ollama
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME")  # default depends on EMBED_PROVIDER
EMBED_DIM = int(os.getenv("EMBED_DIM", "1536"))  # hash provider only; model providers report their own

# LLM configuration (query normalization + image captioning)
OLLAMA_HOST = os.getenv("OLLAMA_HOST")
NORMALIZER_ENABLED = os.getenv("NORMALIZER_ENABLED", "false").lower() == "true"
NORMALIZER_MODEL = os.getenv("NORMALIZER_MODEL", "llama3.2:latest")
VISION_MODEL = os.getenv("VISION_MODEL", "llava:latest")

# Media providers - a provider is enabled when its credential is set
UNSPLASH_ACCESS_KEY = os.getenv("UNSPLASH_ACCESS_KEY")
PEXELS_API_KEY = os.getenv("PEXELS_API_KEY")
GETTY_API_KEY = os.getenv("GETTY_API_KEY")
GETTY_API_URL = os.getenv("GETTY_API_URL", "https://api.gettyimages.com/v3")
PROVIDER_TIMEOUT_SEC = float(os.getenv("PROVIDER_TIMEOUT_SEC", "20"))

# Media client behaviour
MEDIA_CACHE_TTL_SEC = int(os.getenv("MEDIA_CACHE_TTL_SEC", "900"))  # 15 minutes
FILL_FALLBACK_QUERIES = [
    q.strip()
    for q in os.getenv("FILL_FALLBACK_QUERIES", "restaurant interior,food photography").split(",")
    if q.strip()
]
SYNC_QUEUE_SIZE = int(os.getenv("SYNC_QUEUE_SIZE", "64"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_vector_index(dimension: int = None):
    """Get configured vector index implementation."""
    dimension = dimension or EMBED_DIM

    if VECTOR_PROVIDER == "faiss":
        try:
            from ..vector.faiss_store import FaissVectorIndex
            return FaissVectorIndex(dimension)
        except ImportError:
            # Gracefully degrade to the numpy index if FAISS not available
            from ..vector.index import NumpyFlatIndex
            return NumpyFlatIndex(dimension)
    else:
        from ..vector.index import NumpyFlatIndex
        return NumpyFlatIndex(dimension)


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "sentence_transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME or "all-mpnet-base-v2")
    elif EMBED_PROVIDER == "ollama":
        from ..vector.embeddings import OllamaEmbedding
        return OllamaEmbedding(EMBED_MODEL_NAME or "nomic-embed-text", host=OLLAMA_HOST)
    else:
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(EMBED_DIM)


def get_object_storage():
    """Get the object storage client for bank persistence."""
    from .storage import LocalObjectStorage
    ensure_storage_directory()
    return LocalObjectStorage(BANK_STORAGE_DIR, prefix=BANK_PREFIX, public_url=BANK_PUBLIC_URL)


def get_providers():
    """Build the media providers whose credentials are configured."""
    from ..media.providers import GettyProvider, PexelsProvider, UnsplashProvider

    providers = {}
    if UNSPLASH_ACCESS_KEY:
        providers["unsplash"] = UnsplashProvider(UNSPLASH_ACCESS_KEY, timeout=PROVIDER_TIMEOUT_SEC)
    if PEXELS_API_KEY:
        providers["pexels"] = PexelsProvider(PEXELS_API_KEY, timeout=PROVIDER_TIMEOUT_SEC)
    if GETTY_API_KEY:
        providers["getty"] = GettyProvider(GETTY_API_KEY, base_url=GETTY_API_URL, timeout=PROVIDER_TIMEOUT_SEC)
    return providers


def get_query_normalizer():
    """Get the LLM query normalizer. Returns None if normalization disabled."""
    if not NORMALIZER_ENABLED:
        return None

    from ..media.normalize import QueryNormalizer
    return QueryNormalizer(NORMALIZER_MODEL, host=OLLAMA_HOST)


def ensure_storage_directory():
    """Ensure the bank storage directory exists."""
    Path(BANK_STORAGE_DIR).mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if VECTOR_PROVIDER not in ["faiss", "memory"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER not in ["hash", "sentence_transformers", "ollama"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if not 0.0 <= BANK_MIN_SCORE <= 1.0:
        issues.append("BANK_MIN_SCORE must be within [0, 1]")

    if BANK_CONFIDENT_SCORE < BANK_MIN_SCORE:
        issues.append("BANK_CONFIDENT_SCORE must be >= BANK_MIN_SCORE")

    if MEDIA_CACHE_TTL_SEC < 0:
        issues.append("MEDIA_CACHE_TTL_SEC must be >= 0")

    if not FILL_FALLBACK_QUERIES:
        issues.append("FILL_FALLBACK_QUERIES must contain at least one query")

    if SYNC_QUEUE_SIZE < 1:
        issues.append("SYNC_QUEUE_SIZE must be >= 1")

    if not (UNSPLASH_ACCESS_KEY or PEXELS_API_KEY or GETTY_API_KEY):
        issues.append("No media provider credentials configured - provider search disabled")

    return issues
