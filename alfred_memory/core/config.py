"""
Alfred Memory Configuration
---------------------------
Centralized configuration for the embedding chain, the record store and the
hybrid retrieval layer. Loads from environment variables and YAML files.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from alfred_memory.platform import ensure_directory, get_cache_dir, get_data_dir

logger = logging.getLogger("Alfred.Config")

DEFAULT_FASTEMBED_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_OLLAMA_MODEL = "nomic-embed-text"
DEFAULT_VOYAGE_MODEL = "voyage-2"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected positive float. Using %s.",
            name,
            raw,
            default,
        )
        return default


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning("Invalid %s value '%s'; expected positive integer. Ignoring.", name, raw)
        return None


class EmbeddingConfig(BaseModel):
    """Embedding chain configuration. Providers are tried in the order listed here."""
    cache_dir: str = str(get_cache_dir())

    # Local neural model (fastembed / ONNX runtime)
    fastembed_enabled: bool = True
    fastembed_model: str = DEFAULT_FASTEMBED_MODEL
    fastembed_dimensions: int = 384
    allow_model_download: bool = True

    # Local daemon
    ollama_enabled: bool = True
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_dimensions: int = 768

    # Remote API; text leaves the device, so it is opt-in
    voyage_enabled: bool = False
    voyage_api_key: Optional[str] = None
    voyage_model: str = DEFAULT_VOYAGE_MODEL
    voyage_dimensions: int = 1024
    voyage_url: str = "https://api.voyageai.com/v1"

    probe_timeout: float = 3.0
    request_timeout: float = 30.0


class StoreConfig(BaseModel):
    """SQLite record store configuration."""
    path: str = os.path.join(str(get_data_dir()), "vectors.db")
    # None means "use the lead provider's dimensionality"
    dimensions: Optional[int] = None
    enable_fts: bool = True
    lock_timeout: float = 10.0


class RetrievalConfig(BaseModel):
    """BM25 and fusion parameters."""
    k1: float = 1.2
    b: float = 0.75
    rrf_k: int = 60
    vector_weight: float = 0.7
    bm25_weight: float = 0.3
    default_limit: int = 10
    candidate_multiplier: int = 3
    min_candidates: int = 50
    use_fts: bool = True


class AlfredMemoryConfig(BaseModel):
    """Root configuration for the memory engine."""
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    data_dir: str = str(get_data_dir())
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "AlfredMemoryConfig":
        """
        Load configuration from environment variables.

        Environment variables override defaults:
        - ALFRED_HOME / ALFRED_DATA_DIR / ALFRED_CACHE_DIR: directories
        - ALFRED_EMBEDDING_DIMS: force the store dimensionality
        - ALFRED_FASTEMBED_ENABLED / ALFRED_FASTEMBED_MODEL / ALFRED_FASTEMBED_DIMS
        - ALFRED_ALLOW_MODEL_DOWNLOAD: let fastembed fetch missing models
        - ALFRED_OLLAMA_ENABLED / ALFRED_OLLAMA_URL / ALFRED_OLLAMA_MODEL / ALFRED_OLLAMA_DIMS
        - ALFRED_VOYAGE_ENABLED / VOYAGE_API_KEY / ALFRED_VOYAGE_MODEL / ALFRED_VOYAGE_DIMS
        - ALFRED_PROBE_TIMEOUT / ALFRED_EMBED_TIMEOUT: seconds
        - ALFRED_FTS_ENABLED: use the SQLite FTS5 lexical path
        - ALFRED_LOG_LEVEL
        """
        data_dir = str(get_data_dir())
        use_fts = _env_bool("ALFRED_FTS_ENABLED", True)

        return cls(
            data_dir=data_dir,
            embedding=EmbeddingConfig(
                cache_dir=str(get_cache_dir()),
                fastembed_enabled=_env_bool("ALFRED_FASTEMBED_ENABLED", True),
                fastembed_model=os.environ.get("ALFRED_FASTEMBED_MODEL", DEFAULT_FASTEMBED_MODEL),
                fastembed_dimensions=int(os.environ.get("ALFRED_FASTEMBED_DIMS", "384")),
                allow_model_download=_env_bool("ALFRED_ALLOW_MODEL_DOWNLOAD", True),
                ollama_enabled=_env_bool("ALFRED_OLLAMA_ENABLED", True),
                ollama_url=os.environ.get("ALFRED_OLLAMA_URL", "http://localhost:11434"),
                ollama_model=os.environ.get("ALFRED_OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL),
                ollama_dimensions=int(os.environ.get("ALFRED_OLLAMA_DIMS", "768")),
                voyage_enabled=_env_bool("ALFRED_VOYAGE_ENABLED", False),
                voyage_api_key=os.environ.get("VOYAGE_API_KEY") or None,
                voyage_model=os.environ.get("ALFRED_VOYAGE_MODEL", DEFAULT_VOYAGE_MODEL),
                voyage_dimensions=int(os.environ.get("ALFRED_VOYAGE_DIMS", "1024")),
                probe_timeout=_env_float("ALFRED_PROBE_TIMEOUT", 3.0),
                request_timeout=_env_float("ALFRED_EMBED_TIMEOUT", 30.0),
            ),
            store=StoreConfig(
                path=os.path.join(data_dir, "vectors.db"),
                dimensions=_env_optional_int("ALFRED_EMBEDDING_DIMS"),
                enable_fts=use_fts,
            ),
            retrieval=RetrievalConfig(use_fts=use_fts),
            log_level=os.environ.get("ALFRED_LOG_LEVEL", "info"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "AlfredMemoryConfig":
        """Load configuration from a YAML file, falling back to the environment."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using environment", path)
            return cls.from_env()
        return cls(**data)

    def ensure_directories(self) -> None:
        """Create data and cache directories if they don't exist."""
        ensure_directory(Path(self.data_dir))
        ensure_directory(Path(self.store.path).parent)
        ensure_directory(Path(self.embedding.cache_dir))
        logger.info("Data directory: %s", self.data_dir)
