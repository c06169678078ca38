from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Lexdraft API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:5173"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"
    auth_enabled: bool = False
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = "gpt-4o"
    openai_lite_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-ada-002"
    openai_timeout_seconds: float = 60.0
    embedding_mode: str = "hash"  # hash|openai|hybrid
    embedding_dim: int = 256

    aws_region: str = "us-east-1"
    storage_backend: str = "local"  # local|s3
    s3_bucket: str = "lexdraft-dev"
    s3_prefix: str = "lexdraft"
    storage_root: str = "data/uploads"
    signed_url_expiry_seconds: int = 3600
    # Only sqlite is wired up; the managed Postgres schema mirrors these tables.
    database_url: str = "sqlite:///./lexdraft.db"

    chunk_size_chars: int = 1000
    chunk_overlap_chars: int = 200
    embedding_batch_documents: int = 5
    semantic_search_threshold_default: float = 0.75
    semantic_search_count_default: int = 5
    analysis_max_chars: int = 20000
    chat_context_tokens_per_document: int = 1500
    max_upload_file_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
