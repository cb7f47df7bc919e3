# Author: Bradley R. Kinnard — env vars or bust

"""
Settings via pydantic-settings. Reads from env, falls back to .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"  # "production" hides error internals
    log_level: str = "INFO"

    # LLM
    openai_api_key: str = ""  # empty = invoker reports not configured
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    llm_timeout: float = 15.0  # per attempt, seconds
    llm_max_retries: int = 2  # total attempts, not extra ones
    llm_backoff_base: float = 1.0  # seconds, doubled per attempt

    # storage
    database_url: str = "sqlite+aiosqlite:///./criticode.db"
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_backend: str = "memory"  # memory | redis

    # auth. tokens are issued elsewhere, we only verify them
    jwt_secret: str = "fallback-secret-for-development-only"
    jwt_issuer: str = "code-review-backend"
    jwt_audience: str = "code-review-app"

    # http
    trust_proxy: bool = False  # honor X-Forwarded-For when behind a LB
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://localhost:4200"
    health_path: str = "/health"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # ignore unknown env vars

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
