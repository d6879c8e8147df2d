import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_public_base_url: str

    document_store: str
    notification_backend: str
    csrf_enabled: bool
    max_upload_mb: int
    edit_debounce_seconds: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///qms.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_public_base_url=_getenv("S3_PUBLIC_BASE_URL", ""),
        document_store=_getenv("DOCUMENT_STORE", "sql").lower(),
        notification_backend=_getenv("NOTIFICATION_BACKEND", "database").lower(),
        csrf_enabled=_getflag("CSRF_ENABLED", True),
        max_upload_mb=int(_getenv("MAX_UPLOAD_MB", "50")),
        edit_debounce_seconds=float(_getenv("EDIT_DEBOUNCE_SECONDS", "1.5")),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_PUBLIC_BASE_URL": s.s3_public_base_url,
        "DOCUMENT_STORE": s.document_store,
        "NOTIFICATION_BACKEND": s.notification_backend,
        "CSRF_ENABLED": s.csrf_enabled,
        "EDIT_DEBOUNCE_SECONDS": s.edit_debounce_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # uploads are capped per file (50MB observed for label artwork)
        "MAX_UPLOAD_BYTES": s.max_upload_mb * 1024 * 1024,
        "MAX_CONTENT_LENGTH": (s.max_upload_mb + 1) * 1024 * 1024,
    }
