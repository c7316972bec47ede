import os
from dotenv import load_dotenv

# Load .env manually (local dev, optional); the container runtime injects real env vars
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env"))


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _list(name: str, default: str) -> list[str]:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


APP_ENV = os.getenv("APP_ENV", "production").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# store
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "docbridge")
MONGO_TIMEOUT_MS = _int("MONGO_TIMEOUT_MS", 5000)

# http
ALLOWED_ORIGINS = _list("ALLOWED_ORIGINS", "*")

# pagination window
DEFAULT_LIMIT = _int("DEFAULT_LIMIT", 100)
MAX_LIMIT = _int("MAX_LIMIT", 1000)

# collection listing
LISTING_SAMPLE_SIZE = _int("LISTING_SAMPLE_SIZE", 100)
LISTING_CONCURRENCY = _int("LISTING_CONCURRENCY", 8)

# identifier lookup / writes
SCAN_MAX_DOCS = _int("SCAN_MAX_DOCS", 5000)
MAX_BULK_INSERT = _int("MAX_BULK_INSERT", 1000)

# 0 = cached handles never expire
HANDLE_TTL_SECONDS = _int("HANDLE_TTL_SECONDS", 0)
RESERVED_PREFIXES = tuple(_list("RESERVED_PREFIXES", "system.,__"))

ACTIVITY_LOG = _bool("ACTIVITY_LOG", False)
ACTIVITY_COLLECTION = "__activity"


def is_development() -> bool:
    return APP_ENV in ("dev", "development", "local")
