"""Configuration for the Sentra API and chat client."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Sentra configuration settings."""

    # Document store
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/sentra.db"

    # LLM provider (Anthropic-compatible messages API)
    LLM_API_URL: str = "https://api.anthropic.com"
    LLM_API_KEY: str = ""
    LLM_API_VERSION: str = "2023-06-01"
    LLM_MODEL: str = "claude-3-5-haiku-latest"
    LLM_TEMPERATURE: float = 0.8
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Model used for CFM memory summaries
    LLM_SUMMARY_MODEL: str = "claude-3-5-haiku-latest"
    LLM_SUMMARY_MAX_TOKENS: int = 400

    # Wall-clock budget for one streamed chat turn
    STREAM_TIMEOUT_SECONDS: float = 60.0

    # Bearer token verification (RS256 via JWKS)
    JWKS_URL: str = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    JWT_ISSUER: str = ""
    JWT_AUDIENCE: str = ""
    JWKS_CACHE_TTL_SECONDS: int = 300

    # In-context reference examples appended to every system prompt
    PROMPT_EXAMPLES_DIR: str = "./prompts"

    # Server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_RELOAD: bool = False

    # Client
    SENTRA_API_URL: str = "http://localhost:8000"

    class Config:
        env_file = ".env"


# Global settings instance
settings = Settings()
