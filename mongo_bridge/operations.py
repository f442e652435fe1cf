"""
Request envelopes for the nine storage operations.

Every operation is a POST whose JSON body names the target database and
collection and carries the operation's arguments, for example:

    {
        "database": "mydb",
        "collection": "mycollection",
        "filter": {"_id": {"$oid": "65a1f0c2e4b0a1b2c3d4e5f6"}},
        "projection": {"name": 1},
        "sort": {"createdAt": -1},
        "limit": 100,
        "skip": 0
    }

This module only checks shapes. Extended JSON decoding happens in the
dispatcher so decode errors can name the field they came from.
"""

from dataclasses import dataclass, field

INSERT_ONE = "insertOne"
INSERT_MANY = "insertMany"
FIND_ONE = "findOne"
FIND = "find"
UPDATE_ONE = "updateOne"
UPDATE_MANY = "updateMany"
DELETE_ONE = "deleteOne"
DELETE_MANY = "deleteMany"
AGGREGATE = "aggregate"

OPERATIONS = (
    INSERT_ONE,
    INSERT_MANY,
    FIND_ONE,
    FIND,
    UPDATE_ONE,
    UPDATE_MANY,
    DELETE_ONE,
    DELETE_MANY,
    AGGREGATE,
)


# Characters MongoDB rejects in database names
DATABASE_NAME_FORBIDDEN = (" ", ".", "$", "/", "\\", "\"", "\x00")


class RequestError(ValueError):
    """The request body cannot be turned into an operation."""


@dataclass
class OperationRequest:
    operation: str
    database: str
    collection: str
    document: dict = None
    documents: list = None
    filter: dict = field(default_factory=dict)
    update: object = None
    projection: dict = None
    sort: object = None
    pipeline: list = None
    limit: int = 0
    skip: int = 0
    upsert: bool = False
    ordered: bool = True

    @property
    def namespace(self):
        return f"{self.database}.{self.collection}"


def _require_name(data, key):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise RequestError(f"{key} is required and must be a non-empty string")
    return value


def _database_name(data):
    name = _require_name(data, "database")
    for char in DATABASE_NAME_FORBIDDEN:
        if char in name:
            raise RequestError(f"database name must not contain {char!r}")
    return name


def _collection_name(data):
    name = _require_name(data, "collection")
    if "$" in name or "\x00" in name:
        raise RequestError("collection name must not contain '$' or NUL")
    if ".." in name or name.startswith(".") or name.endswith("."):
        raise RequestError("collection name must not start or end with '.' or contain '..'")
    return name


def _object(data, key, required=False, default=None):
    if key not in data or data[key] is None:
        if required:
            raise RequestError(f"{key} is required")
        return default
    value = data[key]
    if not isinstance(value, dict):
        raise RequestError(f"{key} must be an object")
    return value


def _object_list(data, key):
    value = data.get(key)
    if value is None:
        raise RequestError(f"{key} is required")
    if not isinstance(value, list):
        raise RequestError(f"{key} must be an array")
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise RequestError(f"{key}[{index}] must be an object")
    return value


def _count(data, key):
    value = data.get(key)
    if value is None:
        return 0
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise RequestError(f"{key} must be a non-negative integer")
    return value


def _flag(data, key, default):
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise RequestError(f"{key} must be a boolean")
    return value


def _sort(data):
    """
    Sort is either an object ({"a": 1, "b": -1}, order significant) or a
    list of [field, direction] pairs.
    """
    value = data.get("sort")
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        for pair in value:
            if not (isinstance(pair, list) and len(pair) == 2 and isinstance(pair[0], str)):
                raise RequestError("sort pairs must be [field, direction]")
        return value
    raise RequestError("sort must be an object or a list of [field, direction] pairs")


def _update(data):
    value = data.get("update")
    if value is None:
        raise RequestError("update is required")
    if isinstance(value, dict):
        if not value:
            raise RequestError("update must not be empty")
        return value
    if isinstance(value, list):
        # update with an aggregation pipeline
        return _object_list(data, "update")
    raise RequestError("update must be an object or an array of pipeline stages")


def parse_request(operation, data):
    """Validate a decoded JSON body for ``operation``."""
    if operation not in OPERATIONS:
        raise RequestError(f"unknown operation: {operation}")
    if not isinstance(data, dict):
        raise RequestError("Request body must be a JSON object")

    request = OperationRequest(
        operation=operation,
        database=_database_name(data),
        collection=_collection_name(data),
    )

    if operation == INSERT_ONE:
        request.document = _object(data, "document", required=True)
    elif operation == INSERT_MANY:
        request.documents = _object_list(data, "documents")
        if not request.documents:
            raise RequestError("documents must not be empty")
        request.ordered = _flag(data, "ordered", True)
    elif operation in (FIND_ONE, FIND):
        request.filter = _object(data, "filter", default={})
        request.projection = _object(data, "projection")
        request.sort = _sort(data)
        request.skip = _count(data, "skip")
        if operation == FIND:
            request.limit = _count(data, "limit")
    elif operation in (UPDATE_ONE, UPDATE_MANY):
        request.filter = _object(data, "filter", default={})
        request.update = _update(data)
        request.upsert = _flag(data, "upsert", False)
    elif operation in (DELETE_ONE, DELETE_MANY):
        # an explicit {} is allowed, a missing filter is not
        request.filter = _object(data, "filter", required=True)
    elif operation == AGGREGATE:
        request.pipeline = _object_list(data, "pipeline")

    return request
