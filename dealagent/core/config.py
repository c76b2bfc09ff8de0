"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Deal Agent"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/deal_agent.db"

    # LLM Provider Selection
    LLM_PROVIDER: Literal["lm_studio", "openrouter"] = "lm_studio"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"
    LM_STUDIO_TIMEOUT: int = 30  # seconds

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 2.0  # seconds, base for exponential backoff
    LLM_DEFAULT_TEMPERATURE: float = 0.2
    LLM_DEFAULT_MAX_TOKENS: int = 1000

    # OpenRouter Configuration
    LLM_ENABLE_OPENROUTER: bool = False
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_DEFAULT_MODEL: str = "google/gemini-2.5-flash-lite"

    # Negotiation
    MAX_NEGOTIATION_ROUNDS: int = 5
    INTER_ROUND_DELAY_SECONDS: float = 1.0
    SESSION_TTL_DAYS: int = 7
    FALLBACK_DISCOUNT_PERCENT: float = 15.0
    CHECKOUT_VALID_HOURS: int = 2

    # Seller discovery registry
    DISCOVERY_BASE_URL: str = "http://localhost:8002"
    DISCOVERY_API_KEY: str = ""
    DISCOVERY_TIMEOUT: float = 10.0  # seconds per attempt
    DISCOVERY_MAX_ATTEMPTS: int = 3
    DISCOVERY_BACKOFF_BASE: float = 1.0
    DISCOVERY_BACKOFF_CAP: float = 10.0
    DISCOVERY_CACHE_TTL_SECONDS: int = 300
    DISCOVERY_MIN_RATING: float = 3.5
    DISCOVERY_USE_FALLBACK_SELLERS: bool = True

    # Seller protocol (MCP tool calls)
    PROTOCOL_TRANSPORT: Literal["sse", "streamable_http"] = "sse"
    PROTOCOL_CONNECT_TIMEOUT: float = 30.0
    PROTOCOL_CALL_TIMEOUT: float = 15.0

    # Session Management
    SESSION_CLEANUP_INTERVAL_MINUTES: int = 60

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    class Config:
        env_file = [
            str(Path(__file__).parent.parent.parent / ".env"),
            ".env",
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
