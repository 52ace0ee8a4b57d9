import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///warehouse_erp.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Public supplier links are built as {SHARE_BASE_URL}/supply/{share_code}
    SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "http://localhost:3000")
    SHARE_DEFAULT_EXPIRES_HOURS = int(os.getenv("SHARE_DEFAULT_EXPIRES_HOURS", str(7 * 24)))
    SHARE_MAX_EXPIRES_HOURS = int(os.getenv("SHARE_MAX_EXPIRES_HOURS", str(365 * 24)))

    STATISTICS_MAX_PRODUCT_STATUSES = int(os.getenv("STATISTICS_MAX_PRODUCT_STATUSES", "100"))
    STATISTICS_ENABLE_PARALLEL_QUERIES = _env_bool("STATISTICS_ENABLE_PARALLEL_QUERIES", True)
    STATISTICS_ENABLE_CACHE = _env_bool("STATISTICS_ENABLE_CACHE", False)
    STATISTICS_CACHE_EXPIRATION = int(os.getenv("STATISTICS_CACHE_EXPIRATION", "300"))
    STATISTICS_CACHE_MAX_ENTRIES = int(os.getenv("STATISTICS_CACHE_MAX_ENTRIES", "1024"))
    STATISTICS_MAX_WORKERS = int(os.getenv("STATISTICS_MAX_WORKERS", "3"))
