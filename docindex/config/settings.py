from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

class ExtractionConfig(BaseModel):
    provider: str = "local"                  # "local" | "azure"
    endpoint: str = ""
    model_id: str = "prebuilt-layout"
    api_version: str = "2024-11-30"
    poll_interval: float = 1.0
    timeout: float = 300.0
    heading_font_ratio: float = 1.1
    title_font_ratio: float = 1.5
    header_footer_threshold: int = 3
    page_number_band: float = 0.10           # page numbers only in the top or bottom 10%

class FigureConfig(BaseModel):
    header_threshold: float = 0.20           # top 20% of the page
    footer_threshold: float = 0.80           # bottom 20% of the page
    small_width_1: int = 450
    small_height_1: int = 100
    small_width_2: int = 270
    small_height_2: int = 270
    default_page_width: float = 612.0
    default_page_height: float = 792.0
    max_concurrency: int = 4

class NodeConfig(BaseModel):
    max_tokens_per_node: int = 8192
    overlap_tokens: int = 100

class EmbeddingConfig(BaseModel):
    provider: str = "local"                  # "local" | "api"
    model_name: str = "BAAI/bge-large-en-v1.5"
    api_base_url: str = "https://api.openai.com/v1"
    api_model: str = "text-embedding-3-large"
    vector_dim: int = 1024
    batch_size: int = 32
    normalise: bool = True
    max_items_per_batch: int = 2048
    max_tokens_per_batch: int = 300_000
    max_concurrent_batches: int = 1

class QdrantConfig(BaseModel):
    mode: str = "local"                      # "local" | "memory" | "cloud"
    local_path: str = "./data/qdrant_store"
    cloud_url: str = ""
    collection_name: str = "document_nodes"
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    upsert_batch_size: int = 1000

class LLMConfig(BaseModel):
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4.1"
    fallback_model: str = "openai/gpt-4.1-mini"
    max_tokens: int = 2048
    temperature: float = 0.0
    timeout: float = 120.0
    max_retries: int = 3
    base_delay: float = 0.5
    tokenizer_encoding: str = "o200k_base"

class SummaryConfig(BaseModel):
    max_tokens_per_batch: int = 100_000
    max_summary_chars: int = 2500

class StorageConfig(BaseModel):
    root_path: str = "./data/objects"
    container: str = "documents"

class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///./data/documents.db"
    echo: bool = False

class PreviewConfig(BaseModel):
    enabled: bool = True
    dpi: int = 100
    jpg_quality: int = 80

class QueueConfig(BaseModel):
    start_on_startup: bool = True
    event_buffer_size: int = 1000

class AppSettings(BaseSettings):
    extraction: ExtractionConfig = ExtractionConfig()
    figures: FigureConfig = FigureConfig()
    nodes: NodeConfig = NodeConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    qdrant: QdrantConfig = QdrantConfig()
    llm: LLMConfig = LLMConfig()
    summary: SummaryConfig = SummaryConfig()
    storage: StorageConfig = StorageConfig()
    database: DatabaseConfig = DatabaseConfig()
    previews: PreviewConfig = PreviewConfig()
    queue: QueueConfig = QueueConfig()
    log_level: str = "INFO"

    openrouter_api_key: str = ""
    embedding_api_key: str = ""
    document_intelligence_key: str = ""
    qdrant_api_key: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

def load_settings(config_path: str = "docindex/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    # Try multiple paths for convenience during testing vs running
    paths_to_try = [
        os.getenv("DOCINDEX_CONFIG", ""),
        config_path,
        "config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    # Manually map yaml sections to our sub-models
    return AppSettings(
        extraction=ExtractionConfig(**yaml_data.get("extraction", {})),
        figures=FigureConfig(**yaml_data.get("figures", {})),
        nodes=NodeConfig(**yaml_data.get("nodes", {})),
        embedding=EmbeddingConfig(**yaml_data.get("embedding", {})),
        qdrant=QdrantConfig(**yaml_data.get("qdrant", {})),
        llm=LLMConfig(**yaml_data.get("llm", {})),
        summary=SummaryConfig(**yaml_data.get("summary", {})),
        storage=StorageConfig(**yaml_data.get("storage", {})),
        database=DatabaseConfig(**yaml_data.get("database", {})),
        previews=PreviewConfig(**yaml_data.get("previews", {})),
        queue=QueueConfig(**yaml_data.get("queue", {})),
        log_level=yaml_data.get("log_level", "INFO")
    )

# Global settings instance
settings = load_settings()
