import pytest
from bson.errors import InvalidId
from pymongo import errors as mongo_errors

from docbridge import errors


@pytest.mark.parametrize("exc, code, status", [
    (mongo_errors.DuplicateKeyError("dup", 11000), "DuplicateKey", 409),
    (mongo_errors.ServerSelectionTimeoutError("timeout"), "ConnectionFailure", 500),
    (mongo_errors.AutoReconnect("gone"), "ConnectionFailure", 500),
    (InvalidId("bad oid"), "CastFailure", 400),
    (mongo_errors.OperationFailure("bad op"), "ValidationFailure", 400),
    (RuntimeError("boom"), "InternalFailure", 500),
])
def test_classify(exc, code, status):
    err = errors.classify(exc)
    assert err.code == code
    assert err.status_code == status


def test_bulk_write_duplicate():
    exc = mongo_errors.BulkWriteError({"writeErrors": [{"code": 11000, "errmsg": "dup"}]})
    assert errors.classify(exc).code == "DuplicateKey"


def test_bridge_errors_pass_through():
    err = errors.NotFound()
    assert errors.classify(err) is err


def test_details_only_when_asked():
    err = errors.InternalFailure(details="stack trace")
    assert err.to_dict() == {"code": "InternalFailure", "message": "Internal server error"}
    assert err.to_dict(include_details=True)["details"] == "stack trace"
