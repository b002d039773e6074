"""Configuration loader for the Breslov RAG engine."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "Breslov RAG"
    version: str = "1.0.0"
    language: str = "he"


class LoggingConfig(BaseModel):
    """Logging configuration applied by the command-line entry point."""

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ChunkingConfig(BaseModel):
    """Semantic chunking configuration.

    Token counts are estimates (characters / 4), not tokenizer output.
    """

    max_tokens: int = 75000
    min_tokens: int = 50000
    overlap_ratio: float = 0.1
    sections_per_unit: int = 10
    split_ratio: float = 0.8


class IndexingConfig(BaseModel):
    """Index builder configuration for the chunk, book and master tiers."""

    max_keywords: int = 50
    section_keyword_cap: int = 20
    chunk_reference_keyword_cap: int = 10
    related_top_k: int = 5
    related_threshold: float = 0.3
    related_theme_weight: float = 0.6
    related_keyword_weight: float = 0.4
    global_keyword_min_count: int = 5
    top_themes: int = 10
    quote_strength: float = 0.8
    book_token_budget: int = 200000
    master_token_budget: int = 100000


class RoutingConfig(BaseModel):
    """Hierarchical router configuration.

    The weights are the values the engine has always used; they are
    exposed here so they can be tuned without code changes.
    """

    max_tokens: int = 900000
    lexical_weight: float = 0.3
    thematic_weight: float = 0.3
    semantic_weight: float = 0.4
    lexical_normalizer: float = 100.0
    book_score_floor: float = 0.1
    top_books: int = 3
    section_keyword_weight: float = 0.2
    section_theme_weight: float = 0.3
    section_semantic_weight: float = 0.5
    section_score_floor: float = 0.1
    sections_per_book: int = 5
    top_sections: int = 10
    partial_chunk_min_tokens: int = 10000
    sufficient_context_ratio: float = 0.8
    confidence_count_weight: float = 0.3
    confidence_keyword_weight: float = 0.4
    confidence_theme_weight: float = 0.3
    embedding_timeout_seconds: float = 5.0
    max_workers: int = 4


class CacheConfig(BaseModel):
    """Route result cache configuration."""

    enabled: bool = True
    backend: str = "memory"  # "memory", "sqlite"
    ttl_seconds: int = 3600
    sweep_interval: int = 100


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""

    enabled: bool = False
    model: str = "intfloat/multilingual-e5-large"
    device: str = "auto"
    batch_size: int = 32


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    books_dir: str = "./data/books"
    index_dir: str = "./data/indexes"
    sqlite_path: str = "./db/breslov.db"


class AppConfig(BaseModel):
    """Root application configuration."""

    app: AppInfo = Field(default_factory=AppInfo)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def load_config(config_path: str | Path = "config.yaml") -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Fully populated AppConfig instance.
    """
    load_dotenv()

    yaml_data: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

    config = AppConfig(**yaml_data)

    # Environment overrides
    log_level = os.getenv("BRESLOV_RAG_LOG_LEVEL")
    if log_level:
        config.logging.level = log_level.upper()
    if os.getenv("BRESLOV_RAG_INDEX_DIR"):
        config.storage.index_dir = os.environ["BRESLOV_RAG_INDEX_DIR"]

    return config
