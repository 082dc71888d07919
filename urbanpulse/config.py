"""
Centralized settings for the UrbanPulse reports backend.

Provides a lightweight wrapper around environment variables (with `.env`
support for local development) so the rest of the codebase can import a single
`get_settings()` helper when configuration is needed. This avoids ad-hoc calls
to `os.environ` spread across modules and keeps defaults consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from dotenv import dotenv_values


@dataclass(frozen=True)
class Settings:
    """Immutable view of application configuration."""

    # General
    environment: str
    log_level: str
    allowed_hosts: tuple[str, ...]

    # Database
    database_url: str

    # Media storage
    storage_provider: str
    local_storage_dir: Path
    s3_bucket: str
    s3_region: str
    s3_endpoint: Optional[str]
    s3_use_ssl: bool
    s3_access_key_id: Optional[str]
    s3_secret_access_key: Optional[str]
    s3_public_url: Optional[str]
    kms_key_id: Optional[str]
    cloudfront_domain: Optional[str]
    upload_timeout_seconds: float
    max_image_bytes: int
    max_audio_bytes: int

    # Reverse geocoding
    geocoder_url: str
    geocoder_user_agent: str
    geocode_timeout_seconds: float

    # Session tokens / admin gate
    admin_passcode: Optional[str]
    jwt_secret: str
    jwt_access_minutes: int

    # Observability
    metrics_namespace: str


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_lookup(key: str, env: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or env.get(key) or default


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""

    project_root = Path(__file__).resolve().parents[1]
    env_path = project_root / ".env"
    env_file = dotenv_values(str(env_path)) if env_path.exists() else {}

    storage_dir = _env_lookup("LOCAL_STORAGE_DIR", env_file)

    return Settings(
        environment=_env_lookup("APP_ENV", env_file, "development"),
        log_level=_env_lookup("LOG_LEVEL", env_file, "INFO").upper(),
        allowed_hosts=tuple(
            h.strip() for h in _env_lookup("ALLOWED_HOSTS", env_file, "*").split(",") if h.strip()
        ),
        database_url=_env_lookup("DATABASE_URL", env_file, "sqlite+aiosqlite:///./urbanpulse.db"),
        storage_provider=_env_lookup("STORAGE_PROVIDER", env_file, "local").lower(),
        local_storage_dir=Path(storage_dir) if storage_dir else project_root / "storage",
        s3_bucket=_env_lookup("S3_BUCKET", env_file, "urbanpulse-media"),
        s3_region=_env_lookup("S3_REGION", env_file, "us-east-1"),
        s3_endpoint=_env_lookup("S3_ENDPOINT", env_file) or _env_lookup("S3_ENDPOINT_URL", env_file),
        s3_use_ssl=_as_bool(_env_lookup("S3_USE_SSL", env_file, "true"), True),
        s3_access_key_id=_env_lookup("S3_ACCESS_KEY_ID", env_file) or _env_lookup("S3_ACCESS_KEY", env_file),
        s3_secret_access_key=_env_lookup("S3_SECRET_ACCESS_KEY", env_file) or _env_lookup("S3_SECRET_KEY", env_file),
        s3_public_url=_env_lookup("S3_PUBLIC_URL", env_file),
        kms_key_id=_env_lookup("KMS_KEY_ID", env_file),
        cloudfront_domain=_env_lookup("CLOUDFRONT_DOMAIN", env_file),
        upload_timeout_seconds=float(_env_lookup("UPLOAD_TIMEOUT_SECONDS", env_file, "30")),
        max_image_bytes=int(_env_lookup("MAX_IMAGE_BYTES", env_file, str(10 * 1024 * 1024))),
        max_audio_bytes=int(_env_lookup("MAX_AUDIO_BYTES", env_file, str(20 * 1024 * 1024))),
        geocoder_url=_env_lookup("GEOCODER_URL", env_file, "https://nominatim.openstreetmap.org"),
        geocoder_user_agent=_env_lookup("GEOCODER_USER_AGENT", env_file, "UrbanPulse/1.0"),
        geocode_timeout_seconds=float(_env_lookup("GEOCODE_TIMEOUT_SECONDS", env_file, "5")),
        admin_passcode=_env_lookup("ADMIN_PASSCODE", env_file),
        # Dev default only; deployments must set JWT_SECRET.
        jwt_secret=_env_lookup("JWT_SECRET", env_file, "urbanpulse-dev-secret"),
        jwt_access_minutes=int(_env_lookup("JWT_ACCESS_MINUTES", env_file, "60")),
        metrics_namespace=_env_lookup("METRICS_NAMESPACE", env_file, "urbanpulse"),
    )


__all__ = ["Settings", "get_settings"]
