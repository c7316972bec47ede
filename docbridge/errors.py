# docbridge/errors.py
from __future__ import annotations

from typing import Optional

from bson.errors import InvalidDocument, InvalidId
from pymongo import errors as mongo_errors


class BridgeError(Exception):
    """
    Base for every error the bridge reports to a caller.
    Carries the HTTP status and a stable machine-readable code.
    """

    status_code = 500
    code = "InternalFailure"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self, include_details: bool = False) -> dict:
        err = {"code": self.code, "message": self.message}
        if include_details and self.details:
            err["details"] = self.details
        return err


class InvalidName(BridgeError):
    status_code = 400
    code = "InvalidName"
    default_message = "Invalid collection name"


class MissingBody(BridgeError):
    status_code = 400
    code = "MissingBody"
    default_message = "Missing request body"


class MissingId(BridgeError):
    status_code = 400
    code = "MissingId"
    default_message = "ID is required for this operation"


class ValidationFailure(BridgeError):
    status_code = 400
    code = "ValidationFailure"
    default_message = "Request could not be validated"


class CastFailure(BridgeError):
    status_code = 400
    code = "CastFailure"
    default_message = "Value could not be cast to the stored type"


class NotFound(BridgeError):
    status_code = 404
    code = "NotFound"
    default_message = "Document not found"


class MethodNotAllowed(BridgeError):
    status_code = 405
    code = "MethodNotAllowed"
    default_message = "Method not allowed"


class DuplicateKey(BridgeError):
    status_code = 409
    code = "DuplicateKey"
    default_message = "Duplicate key"


class ConnectionFailure(BridgeError):
    status_code = 500
    code = "ConnectionFailure"
    default_message = "Database connection failed"


class InternalFailure(BridgeError):
    pass


def _is_duplicate(exc: mongo_errors.PyMongoError) -> bool:
    if isinstance(exc, mongo_errors.DuplicateKeyError):
        return True
    if isinstance(exc, mongo_errors.BulkWriteError):
        write_errors = (exc.details or {}).get("writeErrors") or []
        return any(e.get("code") == 11000 for e in write_errors)
    return getattr(exc, "code", None) == 11000


def classify(exc: BaseException) -> BridgeError:
    """Map any exception raised while serving a request onto a BridgeError."""
    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, mongo_errors.PyMongoError) and _is_duplicate(exc):
        return DuplicateKey(details=str(exc))
    # ServerSelectionTimeoutError and AutoReconnect are ConnectionFailure subclasses
    if isinstance(exc, mongo_errors.ConnectionFailure):
        return ConnectionFailure(details=str(exc))
    if isinstance(exc, (InvalidId, InvalidDocument)):
        return CastFailure(details=str(exc))
    if isinstance(exc, mongo_errors.OperationFailure):
        return ValidationFailure("Store rejected the operation", details=str(exc))
    return InternalFailure(details=str(exc))
