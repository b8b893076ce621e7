from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database (user directory)
    database_url: str = "sqlite:///./proofquest.db"

    # JWT session tokens
    jwt_secret: str
    jwt_alg: str = "HS256"
    jwt_issuer: str = "proofquest"
    jwt_audience: str = "proofquest-users"
    session_ttl_seconds: int = 30 * 24 * 60 * 60  # 30 days

    # Nonce registry
    nonce_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    siwe_nonce_ttl_seconds: int = 10 * 60
    # extra lifetime of the redis key past expires_at, so stale nonces
    # still report as expired instead of missing
    nonce_expiry_grace_seconds: int = 5 * 60
    nonce_reap_interval_seconds: float = 5 * 60
    nonce_reaper_enabled: bool = True

    # SIWE challenge defaults
    default_domain: str = "localhost:8080"
    default_chain_id: int = 1
    siwe_statement: str = "Please sign this message to authenticate with ProofQuest."

    # HTTP
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]
    log_level: str = "INFO"


settings = Settings()
