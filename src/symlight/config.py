"""Configuration management using Pydantic Settings.

Loads configuration from multiple sources with the following priority (highest first):
1. Environment variables (SYMLIGHT_* prefix)
2. .env file
3. config.local.yaml (if exists)
4. config.yaml
5. Default values
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ExplanationMode = Literal["quick", "standard", "deep"]

# Output token caps per explanation mode
MAX_TOKENS_BY_MODE: dict[str, int] = {
    "quick": 768,
    "standard": 1536,
    "deep": 2048,
}


class CorsSettings(BaseModel):
    """CORS configuration."""

    allowed_origins: list[str] = ["http://localhost:5173"]
    allowed_methods: list[str] = ["GET", "POST", "OPTIONS"]
    allowed_headers: list[str] = [
        "Content-Type",
        "X-Request-ID",
    ]


class ServerSettings(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000
    cors: CorsSettings = Field(default_factory=CorsSettings)


class CompletionSettings(BaseModel):
    """OpenAI-compatible completion endpoint configuration."""

    base_url: str = ""
    api_key: str = ""
    model: str = ""
    timeout_ms: int = Field(
        default=0,
        ge=0,
        description="Hard timeout for a whole streaming call, 0 disables it",
    )
    temperature: float | None = Field(default=0.3, ge=0.0, le=2.0)


class ExplainSettings(BaseModel):
    """Pacing and sizing of explain requests."""

    mode: ExplanationMode = "standard"
    debounce_ms: int = Field(default=500, ge=0)
    min_request_interval_ms: int = Field(default=2000, ge=0)
    render_delay_ms: int = Field(default=50, ge=0)

    @field_validator("mode", mode="before")
    @classmethod
    def fallback_mode(cls, v):
        """Unknown modes fall back to 'standard'."""
        if v not in MAX_TOKENS_BY_MODE:
            return "standard"
        return v

    @property
    def max_tokens(self) -> int:
        return MAX_TOKENS_BY_MODE[self.mode]


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class HealthSettings(BaseModel):
    """Health check configuration."""

    endpoint_check_enabled: bool = True
    timeout_seconds: int = 5


def _load_yaml_config(config_dir: Path) -> dict:
    """Load configuration from YAML files.

    Loads config.yaml and optionally overlays config.local.yaml.
    """
    config = {}

    config_file = config_dir / "config.yaml"
    if config_file.exists():
        with open(config_file) as f:
            config = yaml.safe_load(f) or {}

    local_config_file = config_dir / "config.local.yaml"
    if local_config_file.exists():
        with open(local_config_file) as f:
            local_config = yaml.safe_load(f) or {}
            config = _deep_merge(config, local_config)

    return config


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment, .env, and config files."""

    model_config = SettingsConfigDict(
        env_prefix="SYMLIGHT_",
        env_nested_delimiter="__",
        env_file=Path.home() / "symlight.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    completion: CompletionSettings = Field(default_factory=CompletionSettings)
    explain: ExplainSettings = Field(default_factory=ExplainSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)

    # Direct environment variable mappings for common settings
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(default=None, validation_alias="OPENAI_API_BASE_URL")

    def __init__(self, config_dir: Path | None = None, **data):
        """Initialize settings, loading from YAML if config_dir provided."""
        if config_dir is not None:
            yaml_config = _load_yaml_config(config_dir)
            merged = _deep_merge(yaml_config, data)
            super().__init__(**merged)
        else:
            super().__init__(**data)

        if self.openai_api_key and not self.completion.api_key:
            self.completion.api_key = self.openai_api_key

        if self.openai_base_url and not self.completion.base_url:
            self.completion.base_url = self.openai_base_url

    def missing_completion_fields(self) -> list[str]:
        """Names of completion settings that are unset or blank."""
        missing = []
        if not self.completion.base_url.strip():
            missing.append("Endpoint (base URL)")
        if not self.completion.api_key.strip():
            missing.append("API key")
        if not self.completion.model.strip():
            missing.append("Model")
        return missing

    def validate_required(self) -> None:
        """Validate that required settings are present.

        Raises:
            ValueError: If required settings are missing.
        """
        missing = self.missing_completion_fields()
        if missing:
            raise ValueError(f"Missing completion settings: {', '.join(missing)}")


@lru_cache
def get_settings(config_dir: Path | None = None) -> Settings:
    """Get cached settings instance.

    Args:
        config_dir: Optional path to config directory. If None, the project's
                   config/ directory is used when present.

    Returns:
        Settings instance.
    """
    if config_dir is None:
        project_root = Path(__file__).parent.parent.parent
        default_config_dir = project_root / "config"
        if default_config_dir.exists():
            config_dir = default_config_dir

    return Settings(config_dir=config_dir)
