import logging
from datetime import datetime, timezone
from typing import Any, Optional

from docbridge import settings

log = logging.getLogger("docbridge.activity")

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _configured = True


def log_activity(action: str, collection: str, **meta: Any) -> None:
    """
    Record a mutation in the reserved activity collection.
    Best-effort: a failed write is logged, never raised.
    """
    log.info("%s on %s %s", action, collection, meta or "")
    if not settings.ACTIVITY_LOG:
        return
    # imported late: db pulls in the connection singleton
    from docbridge import db

    try:
        db.get_db()[settings.ACTIVITY_COLLECTION].insert_one({
            "ts": datetime.now(timezone.utc),
            "action": action,
            "collection": collection,
            "meta": meta,
        })
    except Exception as e:
        log.warning("activity log write failed: %s", e)
