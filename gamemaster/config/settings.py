"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# LiteLLM provider prefixes that talk to a local server and need no API key.
LOCAL_PROVIDERS = frozenset({"ollama", "ollama_chat", "hosted_vllm", "lm_studio", "llamafile"})


class LLMSettings(BaseSettings):
    """LLM API configuration."""

    model: str = Field(
        default="ollama/qwen3:8b",
        description="LiteLLM model string, e.g. 'anthropic/claude-3-5-sonnet-20241022', "
                    "'openai/gpt-4o', 'ollama/qwen3:8b'. The provider prefix tells LiteLLM "
                    "which API to route the request to.",
    )
    max_tokens: int = Field(default=2048, description="Maximum tokens in response")
    temperature: float = Field(default=0.8, description="Sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    api_base: str | None = Field(
        default=None,
        description="Override the provider endpoint, e.g. http://localhost:11434 for Ollama",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")

    @property
    def provider(self) -> str:
        """Provider prefix of the model string ('' when there is none)."""
        provider, sep, _ = self.model.partition("/")
        return provider if sep else ""

    @property
    def needs_api_key(self) -> bool:
        """Hosted providers need a key; local inference servers don't."""
        return self.provider not in LOCAL_PROVIDERS


class GameSettings(BaseSettings):
    """Turn loop configuration."""

    turn_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Time budget for one turn, including time spent waiting on the player",
    )
    opening_prompt: str = Field(default="Begin.", description="Prompt for the first turn")
    continuation_prompt: str = Field(
        default="Continue.", description="Prompt for every turn after the first"
    )
    max_steps_per_turn: int = Field(
        default=25,
        ge=1,
        description="Safety limit on generation steps (tool round-trips) within one turn",
    )
    show_reasoning: bool = Field(
        default=True, description="Print the model's reasoning stream when it exposes one"
    )
    system_prompt_path: Path | None = Field(
        default=None,
        description="Custom system prompt file. If None, the packaged prompt is used.",
    )

    model_config = SettingsConfigDict(env_prefix="GAME_")


class ToolSettings(BaseSettings):
    """Game tool configuration."""

    api_base_url: str = Field(
        default="https://www.dnd5eapi.co/api", description="D&D 5e SRD API base URL"
    )
    http_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for a single lookup request"
    )
    max_summary_chars: int = Field(
        default=2000, ge=200, description="Lookup summaries are truncated to this length"
    )
    max_dice: int = Field(default=1000, ge=1, description="Largest dice count one roll may use")
    max_input_retries: int = Field(
        default=3,
        ge=1,
        description="Malformed calls to one tool tolerated within a step before the "
                    "model is told to stop retrying",
    )

    model_config = SettingsConfigDict(env_prefix="TOOL_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    game: GameSettings = Field(default_factory=GameSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
