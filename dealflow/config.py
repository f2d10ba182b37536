"""Configuration settings for the deal-flow matching core."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    base_dir: Path = Path(__file__).parent.parent
    data_dir: Path = base_dir / "data"
    db_path: Path = data_dir / "dealflow.db"

    # Overrides db_path when set (e.g. postgresql://...)
    database_url_override: str = ""

    # API Keys
    anthropic_api_key: str = ""

    # LLM Settings
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 1024
    extraction_min_confidence: float = 0.5

    # Oracle calls
    oracle_timeout_seconds: float = 30.0
    scoring_concurrency: int = 5

    # Bulk enrichment
    bulk_item_delay_seconds: float = 0.5  # between items, respects upstream rate limits

    # Contact discovery
    contact_discovery_url: str = ""
    contact_discovery_timeout: float = 20.0
    user_agent: str = "DealflowBot/1.0 (+contact@example.com)"

    # Logging
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.db_path}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "DEALFLOW_"


settings = Settings()

# Ensure data directory exists
settings.data_dir.mkdir(parents=True, exist_ok=True)
