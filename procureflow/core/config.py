"""
Application configuration with environment variables.
"""
import warnings
from typing import List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

_WEAK_SECRETS = frozenset({
    "your-secret-key-change-in-production", "change-me-in-production", "secret", "changeme",
})
_WEAK_DB_PASSWORDS = frozenset({"procureflow", "postgres", "password", "changeme", ""})


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "ProcureFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "procureflow"
    POSTGRES_PASSWORD: str = "procureflow"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "procureflow"
    DATABASE_URL: Optional[str] = None

    # Redis (batch evaluation queue)
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Password hashing cost factor (12 is the OWASP minimum)
    BCRYPT_ROUNDS: int = 12

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCK_MINUTES: int = 120

    # Evaluation oracle
    LLM_PROVIDER: Literal["mock", "openai", "anthropic"] = "mock"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-latest"
    ORACLE_TIMEOUT_SECONDS: float = 30.0
    ORACLE_MAX_ATTEMPTS: int = Field(3, ge=1)
    ORACLE_RETRY_BACKOFF_SECONDS: float = Field(1.0, ge=0)
    VENDOR_HISTORY_LIMIT: int = 10

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v
        data = info.data
        return (
            f"postgresql://{data.get('POSTGRES_USER')}:{data.get('POSTGRES_PASSWORD')}"
            f"@{data.get('POSTGRES_HOST')}:{data.get('POSTGRES_PORT')}/{data.get('POSTGRES_DB')}"
        )

    @model_validator(mode='after')
    def check_production_safety(self) -> 'Settings':
        """Refuse unsafe defaults unless DEBUG; in DEBUG only warn about the key."""
        weak_key = self.SECRET_KEY in _WEAK_SECRETS or len(self.SECRET_KEY) < 32
        if self.DEBUG:
            if weak_key:
                warnings.warn(
                    "SECRET_KEY is weak or default! Set a strong key before deploying.",
                    UserWarning,
                    stacklevel=2,
                )
            return self

        problems = []
        if weak_key:
            problems.append("SECRET_KEY is weak or default (generate one with: openssl rand -hex 32)")
        if self.SEED_DEMO:
            problems.append("SEED_DEMO=true creates predictable credentials")
        if self.POSTGRES_PASSWORD in _WEAK_DB_PASSWORDS and f":{self.POSTGRES_PASSWORD}@" in self.DATABASE_URL:
            problems.append("POSTGRES_PASSWORD is set to a default value")
        if problems:
            raise ValueError("Unsafe production settings: " + "; ".join(problems))
        return self


settings = Settings()
