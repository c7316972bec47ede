# docbridge/db/__init__.py
from pymongo.database import Database

from docbridge import settings
from docbridge.db.connection import MongoConnection
from docbridge.db.handles import CollectionHandle, CollectionResolver, HandleCache

# --- process-wide state (one source of truth) ---
connection = MongoConnection(
    settings.MONGO_URI,
    settings.MONGO_DB,
    timeout_ms=settings.MONGO_TIMEOUT_MS,
)
handles = HandleCache(ttl=settings.HANDLE_TTL_SECONDS)


def get_db() -> Database:
    return connection.get_database()


def connection_epoch() -> int:
    return connection.epoch


resolver = CollectionResolver(
    get_db, handles, reserved_prefixes=settings.RESERVED_PREFIXES, epoch=connection_epoch
)


def resolve_collection(raw_name) -> CollectionHandle:
    return resolver.resolve(raw_name)

