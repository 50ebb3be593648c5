"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

AgentMode = Literal["autonomous", "supervised", "manual"]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "audit-orchestrator"
    app_env: str = "dev"
    agent_mode: AgentMode = "autonomous"
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    learning_enabled: bool = True
    history_limit: int = Field(default=100, ge=1)
    archive_limit: int = Field(default=100, ge=1)

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=30.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=4096, ge=1)
    openai_api_key: str = ""

    tracker_api_token: str = ""
    tracker_base_url: str = "https://api.clickup.com/api/v2"
    tracker_workspace_id: str = ""
    tracker_default_list_id: str = ""
    tracker_timeout_s: float = Field(default=10.0, ge=0.1)
    tracker_cache_ttl_s: float = Field(default=300.0, ge=0.0)
    tracker_pacing_s: float = Field(default=0.2, ge=0.0)

    webhook_secret: str = ""
    webhook_urls: dict[str, str] = Field(default_factory=dict)
    webhook_timeout_s: float = Field(default=10.0, ge=0.1)
    webhook_max_retries: int = Field(default=3, ge=0)
    webhook_queue_pacing_s: float = Field(default=0.1, ge=0.0)
    webhook_signature_header: str = "X-Signature"
    webhook_source: str = "audit-orchestrator"
    webhook_version: str = "2.0.0"

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_ORCHESTRATOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_tracker_token(self) -> str:
        return self.tracker_api_token or os.getenv("CLICKUP_API_TOKEN", "")

    def resolved_webhook_secret(self) -> str:
        return self.webhook_secret or os.getenv("WEBHOOK_SECRET", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
