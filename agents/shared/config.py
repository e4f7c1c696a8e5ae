"""
Code Agent - Settings

Environment-driven configuration for an agent session.
Values may also come from a .env file in the working directory.
"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """
    Settings for the language-model service, the loop and the sandbox bridge.

    Each field reads the environment variable of the same name
    (OPENAI_MODEL, SANDBOX_MAX_ATTEMPTS, ...); loop settings use the
    AGENT_ prefix. Keyword arguments win over the environment.
    """

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4-turbo"
    llm_max_retries: int = Field(default=3, ge=1)
    llm_timeout: int = 30

    max_iterations: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("max_iterations", "AGENT_MAX_ITERATIONS"),
    )
    parallel_tool_calls: bool = Field(
        default=True,
        validation_alias=AliasChoices("parallel_tool_calls", "AGENT_PARALLEL_TOOL_CALLS"),
    )
    max_repeated_turns: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("max_repeated_turns", "AGENT_MAX_REPEATED_TURNS"),
    )

    sandbox_poll_interval: float = Field(default=0.1, gt=0)
    sandbox_max_attempts: int = Field(default=30, ge=1)

    workspace_root: Path = Field(default_factory=Path.cwd)
    preview_base_url: str = "http://localhost:8000"

    log_level: str = "INFO"
    log_dir: str = "./output"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("max_repeated_turns", mode="before")
    @classmethod
    def _disable_repeat_check(cls, value):
        # 0 and "none" switch loop detection off
        if isinstance(value, str) and value.strip().lower() in ("0", "none"):
            return None
        if value == 0:
            return None
        return value

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "AgentSettings":
        """
        Build settings from environment variables.

        Args:
            dotenv_path: .env file to read (defaults to ./.env; a missing file is skipped)
            **overrides: Explicit values that win over the environment

        Returns:
            AgentSettings instance
        """
        return cls(_env_file=dotenv_path or ".env", **overrides)
