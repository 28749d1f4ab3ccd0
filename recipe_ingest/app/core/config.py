import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./recipe_ingest.db", alias="DATABASE_URL")
    auth_secret_key: str = Field("change-me", alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field("HS256", alias="AUTH_ALGORITHM")

    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_port: int = Field(6379, alias="REDIS_PORT")

    llm_base_url: str | None = Field(None, alias="LLM_BASE_URL")
    llm_full_model_name: str = Field("full", alias="LLM_FULL_MODEL_NAME")
    llm_app_id: str | None = Field(None, alias="LLM_APP_ID")
    llm_app_key: str | None = Field(None, alias="LLM_APP_KEY")
    llm_timeout_seconds: float = Field(120.0, alias="LLM_TIMEOUT_SECONDS")

    # Artifact storage: S3/MinIO when a bucket is configured, local filesystem otherwise
    artifact_root: Path = Field(Path("artifacts"), alias="INGEST_ARTIFACT_ROOT")
    artifact_s3_bucket: str | None = Field(None, alias="INGEST_ARTIFACT_S3_BUCKET")
    artifact_s3_prefix: str = Field("ingest", alias="INGEST_ARTIFACT_S3_PREFIX")
    s3_endpoint_url: str | None = Field(None, alias="S3_ENDPOINT_URL")
    s3_force_path_style: bool = Field(False, alias="S3_FORCE_PATH_STYLE")
    s3_region: str | None = Field(None, alias="S3_REGION")
    aws_access_key_id: str | None = Field(None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(None, alias="AWS_SECRET_ACCESS_KEY")

    ingest_user_agent: str = Field(
        "RecipeIngestAgent/1.0 (+https://github.com/recipe-ingest)",
        alias="INGEST_USER_AGENT",
    )
    ingest_fetch_timeout_seconds: float = Field(30.0, alias="INGEST_FETCH_TIMEOUT_SECONDS")
    ingest_max_fetch_retries: int = Field(2, alias="INGEST_MAX_FETCH_RETRIES")
    ingest_max_fetch_size_bytes: int = Field(5 * 1024 * 1024, alias="INGEST_MAX_FETCH_SIZE_BYTES")
    ingest_content_character_budget: int = Field(60000, alias="INGEST_CONTENT_CHARACTER_BUDGET")
    ingest_respect_robots_txt: bool = Field(True, alias="INGEST_RESPECT_ROBOTS_TXT")
    ingest_max_discovery_candidates: int = Field(10, alias="INGEST_MAX_DISCOVERY_CANDIDATES")
    ingest_draft_expiration_days: int = Field(7, alias="INGEST_DRAFT_EXPIRATION_DAYS")
    ingest_max_artifact_size_bytes: int = Field(1024 * 1024, alias="INGEST_MAX_ARTIFACT_SIZE_BYTES")
    ingest_expiration_check_interval_minutes: int = Field(60, alias="INGEST_EXPIRATION_CHECK_INTERVAL_MINUTES")

    circuit_breaker_failure_threshold: int = Field(5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD")
    circuit_breaker_failure_window_minutes: int = Field(10, alias="CIRCUIT_BREAKER_FAILURE_WINDOW_MINUTES")
    circuit_breaker_block_duration_minutes: int = Field(30, alias="CIRCUIT_BREAKER_BLOCK_DURATION_MINUTES")

    guardrail_token_overlap_warning_threshold: int = Field(40, alias="GUARDRAIL_TOKEN_OVERLAP_WARNING_THRESHOLD")
    guardrail_token_overlap_error_threshold: int = Field(80, alias="GUARDRAIL_TOKEN_OVERLAP_ERROR_THRESHOLD")
    guardrail_ngram_similarity_warning_threshold: float = Field(0.20, alias="GUARDRAIL_NGRAM_SIMILARITY_WARNING_THRESHOLD")
    guardrail_ngram_similarity_error_threshold: float = Field(0.35, alias="GUARDRAIL_NGRAM_SIMILARITY_ERROR_THRESHOLD")
    guardrail_ngram_size: int = Field(5, alias="GUARDRAIL_NGRAM_SIZE")
    guardrail_min_token_length: int = Field(2, alias="GUARDRAIL_MIN_TOKEN_LENGTH")
    guardrail_auto_repair_on_error: bool = Field(True, alias="GUARDRAIL_AUTO_REPAIR_ON_ERROR")
    # Commit policy for drafts whose similarity is at warning level but not violating
    guardrail_block_commit_on_warning: bool = Field(False, alias="GUARDRAIL_BLOCK_COMMIT_ON_WARNING")

    search_default_provider: str = Field("brave", alias="SEARCH_DEFAULT_PROVIDER")
    brave_api_key: str | None = Field(None, alias="BRAVE_SEARCH_API_KEY")
    brave_endpoint: str = Field("https://api.search.brave.com/res/v1/web/search", alias="BRAVE_SEARCH_ENDPOINT")
    brave_market: str = Field("en-US", alias="BRAVE_SEARCH_MARKET")
    brave_safe_search: str = Field("moderate", alias="BRAVE_SEARCH_SAFE_SEARCH")
    brave_max_results: int = Field(10, alias="BRAVE_SEARCH_MAX_RESULTS")
    brave_enabled: bool = Field(True, alias="BRAVE_SEARCH_ENABLED")
    brave_timeout_seconds: float = Field(30.0, alias="BRAVE_SEARCH_TIMEOUT_SECONDS")
    brave_rate_limit_per_minute: int = Field(15, alias="BRAVE_SEARCH_RATE_LIMIT_PER_MINUTE")
    brave_allowed_domains: List[str] = Field(default_factory=list, alias="BRAVE_SEARCH_ALLOWED_DOMAINS")
    brave_denied_domains: List[str] = Field(default_factory=list, alias="BRAVE_SEARCH_DENIED_DOMAINS")
    google_api_key: str | None = Field(None, alias="GOOGLE_SEARCH_API_KEY")
    google_search_engine_id: str | None = Field(None, alias="GOOGLE_SEARCH_ENGINE_ID")
    google_endpoint: str = Field("https://www.googleapis.com/customsearch/v1", alias="GOOGLE_SEARCH_ENDPOINT")
    google_language: str = Field("en", alias="GOOGLE_SEARCH_LANGUAGE")
    google_country: str = Field("us", alias="GOOGLE_SEARCH_COUNTRY")
    google_safe_search: str = Field("medium", alias="GOOGLE_SEARCH_SAFE_SEARCH")
    google_max_results: int = Field(10, alias="GOOGLE_SEARCH_MAX_RESULTS")
    google_enabled: bool = Field(True, alias="GOOGLE_SEARCH_ENABLED")
    google_timeout_seconds: float = Field(30.0, alias="GOOGLE_SEARCH_TIMEOUT_SECONDS")
    google_rate_limit_per_minute: int = Field(100, alias="GOOGLE_SEARCH_RATE_LIMIT_PER_MINUTE")
    google_allowed_domains: List[str] = Field(default_factory=list, alias="GOOGLE_SEARCH_ALLOWED_DOMAINS")
    google_denied_domains: List[str] = Field(default_factory=list, alias="GOOGLE_SEARCH_DENIED_DOMAINS")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except PermissionError:
        logger.warning("Unable to read .env; continuing with environment variables only")
        settings = Settings(_env_file=None)
    return settings
