"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.

Both deployables (users service, posts service) read the same Settings class;
each process is pointed at its own database and service name through env.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Relational store (MySQL-protocol compatible) ───────────────────────
    db_host: str = "mysql"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "socialgraph"
    db_pool_size: int = 20
    db_max_overflow: int = 10

    @property
    def db_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Identity lookup (users service, called by the posts service) ───────
    identity_service_url: str = "http://users-service:8080"
    identity_timeout_seconds: float = 5.0

    # ── Auth ───────────────────────────────────────────────────────────────
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_user_claim: str = "userId"

    # ── Pagination ─────────────────────────────────────────────────────────
    default_page_size: int = 10
    max_page_size: int = 100
    suggestion_limit_max: int = 50

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    tracing_enabled: bool = True
    service_name: str = "users-service"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
