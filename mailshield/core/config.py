"""
Configuration settings using Pydantic
Loads environment variables from .env file
"""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings"""

    # Server configuration
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Root logging level")

    # LLM classifier configuration
    LLM_ENABLED: bool = Field(default=False, description="Try the LLM classifier before the rule engine")
    LLM_PROVIDER: str = Field(default="openai", description="Completion backend: 'openai' or 'ollama'")
    LLM_BASE_URL: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible API base URL")
    LLM_API_KEY: Optional[str] = Field(default=None, description="API key for the OpenAI-compatible backend")
    LLM_MODEL: str = Field(default="gpt-4o", description="Model name for the OpenAI-compatible backend")
    OLLAMA_HOST: str = Field(default="http://localhost:11434", description="Ollama server URL")
    OLLAMA_MODEL: str = Field(default="llama3.2:3b", description="Ollama model name")
    LLM_TIMEOUT_SECONDS: float = Field(default=5.0, description="Upper bound for one LLM call")

    # Analysis limits
    BATCH_CONCURRENCY: int = Field(default=8, description="Emails analyzed concurrently in a batch")
    MAX_BATCH_SIZE: int = Field(default=100, description="Maximum emails per batch request")
    MAX_SCAN_CHARS: int = Field(default=20000, description="Text is truncated to this length before regex scanning")
    MAX_RULE_PATTERN_LENGTH: int = Field(default=500, description="Maximum length of a user rule pattern")
    DOMAIN_REPUTATION_TTL_HOURS: int = Field(default=24, description="Domain reputation cache time-to-live in hours")
    FALLBACK_CONFIDENCE_PENALTY: float = Field(default=0.8, description="Confidence multiplier when the LLM fell back to rules")

    # API configuration
    ANALYZE_RATE_LIMIT: str = Field(default="60/minute", description="Rate limit for analysis endpoints")

    @property
    def SERVER_URL(self) -> str:
        """Get the server URL"""
        return f"http://{self.HOST if self.HOST != '0.0.0.0' else 'localhost'}:{self.PORT}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()
