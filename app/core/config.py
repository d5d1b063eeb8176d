"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    
    # Environment
    ENV: str = "dev"
    
    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    # Database
    DATABASE_URL: str
    
    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4
    
    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"
    
    # Integration credential encryption (provider API keys)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    
    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""
    
    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    
    # Ticket list paging
    TICKET_PAGE_SIZE_MIN: int = 50
    TICKET_PAGE_SIZE_MAX: int = 100
    
    # External tracker HTTP calls
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 20.0
    PROVIDER_MAX_ATTEMPTS: int = 3
    
    # OpenAI-compatible chat completions (sentiment scoring and ticket summaries)
    SENTIMENT_API_KEY: str = ""
    SENTIMENT_BASE_URL: str = "https://api.openai.com/v1"
    SENTIMENT_MODEL: str = "gpt-4o-mini"
    SENTIMENT_TIMEOUT_SECONDS: float = 30.0
    SUMMARY_MODEL: str = ""  # empty: use SENTIMENT_MODEL
    
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
    
    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets
    
    @property
    def sentiment_enabled(self) -> bool:
        """Sentiment scoring is active only when an API key is configured."""
        return bool(self.SENTIMENT_API_KEY)
    
    @property
    def summary_model(self) -> str:
        return self.SUMMARY_MODEL or self.SENTIMENT_MODEL


settings = Settings()
