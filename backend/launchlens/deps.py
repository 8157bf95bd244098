"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import Account
from .security import decode_token
from .services.metrics_cache import MetricsCache, build_metrics_cache
from .utils.clock import Clock, utcnow


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    APP_URL: str = "http://localhost:3000"
    JWT_SECRET: str = ""

    # Redis (metrics cache backend + ARQ)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Launch status scheduler
    LAUNCH_STATUS_SCHEDULER_ENABLED: bool = True
    LAUNCH_STATUS_INTERVAL_SECONDS: int = 300  # 5 minutes

    # Metrics cache
    METRICS_CACHE_BACKEND: str = "memory"  # memory | redis
    METRICS_CACHE_TTL_SECONDS: int = 3600  # 1 hour

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_clock() -> Clock:
    """Wall clock used by request handlers; overridden in tests."""
    return utcnow


@lru_cache()
def get_metrics_cache() -> MetricsCache:
    """Process-wide metrics cache built from settings."""
    settings = get_settings()
    return build_metrics_cache(
        backend=settings.METRICS_CACHE_BACKEND,
        redis_url=settings.REDIS_URL,
        default_ttl_seconds=settings.METRICS_CACHE_TTL_SECONDS,
    )


def get_current_account(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
    authorization: Optional[str] = Header(default=None),
) -> Account:
    """Resolve the current account from the `access_token` cookie or bearer header.

    Token issuance happens in the auth service; here we only verify the
    signature and load the account named by `sub`.
    """
    raw = access_token or authorization
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    # Remove optional "Bearer " prefix
    token = raw[len("Bearer "):] if raw.startswith("Bearer ") else raw

    try:
        payload = decode_token(token, get_settings().JWT_SECRET)
        account_id = UUID(str(payload.get("sub")))
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account not found")
    return account
