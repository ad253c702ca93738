"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with AUTOPILOT_MEMORY_ prefix.
Example: AUTOPILOT_MEMORY_LOG_LEVEL=DEBUG
"""

from pathlib import Path
from typing import Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Autopilot Memory configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOPILOT_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    log_level: str = "INFO"
    structured_logging: bool = False  # JSON log lines instead of plain text

    # Scope roots
    user_root: Optional[str] = None  # Defaults to ~/.claude
    project_dir: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AUTOPILOT_MEMORY_PROJECT_DIR", "CLAUDE_PROJECT_DIR"),
    )

    # Embedding Model
    embedding_model: str = "all-MiniLM-L6-v2"

    # Search / scan tuning
    default_search_limit: int = Field(default=10, ge=1, le=100)
    scan_batch_size: int = Field(default=256, ge=1)  # Rows per scroll page when scanning an index

    def get_user_root(self) -> Path:
        """
        Root directory of the user scope.

        Priority:
        1. user_root setting (explicit override via AUTOPILOT_MEMORY_USER_ROOT)
        2. ~/.claude
        """
        if self.user_root:
            return Path(self.user_root).expanduser()
        return Path.home() / ".claude"

    def get_project_root(self, cwd: Optional[str] = None) -> Path:
        """
        Root directory of the project scope for a working directory.

        Priority:
        1. cwd argument (the caller's working directory)
        2. project_dir setting (AUTOPILOT_MEMORY_PROJECT_DIR or CLAUDE_PROJECT_DIR)
        3. the process's current directory
        """
        base = cwd or self.project_dir
        if not base:
            try:
                base = str(Path.cwd())
            except OSError:
                base = "."
        return Path(base).expanduser() / ".claude"


# Singleton instance
settings = Settings()
