"""Configuration management for the session block engine."""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # App settings
    app_name: str = "Session Blocks"
    debug: bool = False
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Supabase
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")

    # Tables
    blocks_table: str = "session_blocks"
    assignments_table: str = "session_block_assignments"
    attributes_table: str = "session_block_attributes"

    # Editing behaviour
    write_retries: int = Field(default=1, ge=0, alias="WRITE_RETRIES")
    check_concurrent_edits: bool = Field(default=True, alias="CHECK_CONCURRENT_EDITS")
    verify_invariants: bool = Field(default=True, alias="VERIFY_INVARIANTS")

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase is configured."""
        return all([
            self.supabase_url,
            self.supabase_anon_key,
        ])


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
