"""Runtime settings for resflow.

Values are read from the environment (prefix ``RESFLOW_``) and from a local
``.env`` file. Delays are in seconds.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RESFLOW_",
        env_file=".env",
        extra="ignore",
    )

    # Tool execution service
    tool_base_url: str = Field("http://localhost:5000", description="Base URL of the tool execution service")
    tool_timeout: float = Field(120.0, gt=0, description="Per-invocation timeout in seconds")

    # Scheduling
    root_start_delay: float = Field(0.5, ge=0, description="Delay before the first root node starts")
    root_stagger: float = Field(0.2, ge=0, description="Extra delay per root index")
    child_delay: float = Field(0.05, ge=0, description="Delay before a released child node starts")

    # Editing
    paste_offset_x: float = Field(40.0, description="Horizontal shift applied to pasted nodes")
    paste_offset_y: float = Field(40.0, description="Vertical shift applied to pasted nodes")

    # Storage
    storage_dir: str = Field("./.resflow_storage", description="Directory for the local workflow slot")
    export_dir: str = Field("./exports", description="Directory receiving exported files")

    log_level: LogLevel = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
