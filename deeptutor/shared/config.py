"""
Configuration management for DeepTutor.
Loads from config/deeptutor.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class BackendConfig(BaseSettings):
    """LLM backend configuration (used by the direct transport and the proxy service)."""
    provider: str = Field(default="gemini")  # gemini, openai, anthropic
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    light_model: Optional[str] = Field(default=None)
    capable_model: Optional[str] = Field(default=None)
    temperature: float = Field(default=0.1)
    direct_timeout_seconds: float = Field(default=45.0)

    model_config = SettingsConfigDict(env_prefix="BACKEND_", extra="ignore", populate_by_name=True)


class GatewayConfig(BaseSettings):
    """Transport selection for generation calls."""
    mode: str = Field(default="proxy", alias="GATEWAY_MODE")  # proxy, direct
    proxy_url: str = Field(default="http://localhost:8000/api/generate", alias="GATEWAY_PROXY_URL")
    proxy_timeout_seconds: float = Field(default=25.0)
    max_inline_text_chars: int = Field(default=30000)

    model_config = SettingsConfigDict(env_prefix="GATEWAY_", extra="ignore", populate_by_name=True)


class SynthesisConfig(BaseSettings):
    """Curriculum synthesis shape and budgets."""
    min_units: int = Field(default=6)
    max_units: int = Field(default=8)
    flashcards_per_unit: int = Field(default=5)
    questions_per_unit: int = Field(default=5)
    resources_per_unit: int = Field(default=3)
    followup_questions: int = Field(default=5)
    structure_max_tokens: int = Field(default=2048)
    unit_max_tokens: int = Field(default=8192)
    followup_max_tokens: int = Field(default=3072)
    review_max_tokens: int = Field(default=1024)
    chat_max_tokens: int = Field(default=2048)
    schedule_max_tokens: int = Field(default=2048)
    chat_context_chars: int = Field(default=1500)
    schedule_sessions: int = Field(default=7)
    # Ground unit resources in web search (gemini only); drops strict JSON mode for that call
    search_resources: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="SYNTHESIS_", extra="ignore")


class StorageConfig(BaseSettings):
    """Persisted client state."""
    db_path: Path = Field(default=Path("data/deeptutor.sqlite"), alias="STORAGE_DB_PATH")
    blob_name: str = Field(default="deeptutor-v5-storage")
    persist_attachments: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore", populate_by_name=True)


class ApiConfig(BaseSettings):
    """Proxy service configuration."""
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    rate_limit_requests_per_minute: int = Field(default=30, alias="API_RATE_LIMIT_RPM")
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For
    trust_forwarded_for: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)


class DeepTutorSettings(BaseSettings):
    """Main DeepTutor configuration."""
    env: str = Field(default="dev", alias="DEEPTUTOR_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=Path("logs/deeptutor.log"), alias="LOG_FILE")

    # Sub-configurations
    backend: BackendConfig = Field(default_factory=BackendConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    synthesis: SynthesisConfig = Field(default_factory=SynthesisConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "DeepTutorSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/deeptutor.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("deeptutor", {}) or {}

        # Nested sections are built through their own settings class so env vars still apply
        sections = {
            "backend": BackendConfig,
            "gateway": GatewayConfig,
            "synthesis": SynthesisConfig,
            "storage": StorageConfig,
            "api": ApiConfig,
        }
        for key, section_cls in sections.items():
            if isinstance(config_dict.get(key), dict):
                config_dict[key] = section_cls(**config_dict[key])

        return cls(**config_dict)


# Global settings instance
_settings: Optional[DeepTutorSettings] = None


def get_settings() -> DeepTutorSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = DeepTutorSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
