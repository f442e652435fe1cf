"""
Operation dispatcher: request body in, (response body, HTTP status) out.

    parse envelope -> decode fields -> one storage call -> encode result

Errors:
    400  malformed body or bad extended JSON (no storage call is made)
    404  findOne matched nothing
    500  storage failure (driver message passed through) or an internal
         encode failure (generic message, detail only in the log)
"""

import time

import pymongo
from bson.errors import BSONError
from pymongo.errors import PyMongoError

from . import metrics
from .extjson import EncodeError, ExtendedJSONCodec, ExtendedJSONError
from .logger import logger
from .operations import (
    AGGREGATE,
    DELETE_MANY,
    DELETE_ONE,
    FIND,
    FIND_ONE,
    INSERT_MANY,
    INSERT_ONE,
    UPDATE_MANY,
    UPDATE_ONE,
    RequestError,
    parse_request,
)

NOT_FOUND_MESSAGE = "No document found"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def error(message, status):
    return {"error": message}, status


def sort_spec(sort):
    """pymongo wants sort as a list of (field, direction) pairs."""
    if sort is None:
        return None
    if isinstance(sort, dict):
        return list(sort.items())
    return [tuple(pair) for pair in sort]


class Dispatcher:
    """Runs one operation per call against a shared storage handle."""

    def __init__(self, storage, codec=None, request_timeout=None):
        self.storage = storage
        self.codec = codec or ExtendedJSONCodec()
        self.request_timeout = request_timeout
        self._handlers = {
            INSERT_ONE: self._insert_one,
            INSERT_MANY: self._insert_many,
            FIND_ONE: self._find_one,
            FIND: self._find,
            UPDATE_ONE: self._update,
            UPDATE_MANY: self._update,
            DELETE_ONE: self._delete,
            DELETE_MANY: self._delete,
            AGGREGATE: self._aggregate,
        }

    def dispatch(self, operation, body):
        try:
            request = parse_request(operation, body)
            decoded = self._decode_fields(request)
        except RequestError as e:
            return error(str(e), 400)

        start = time.perf_counter()
        failed = True
        try:
            collection = self.storage.collection(request.database, request.collection)
            with pymongo.timeout(self.request_timeout):
                result = self._handlers[operation](collection, request, decoded)
            failed = False
        except (PyMongoError, BSONError) as e:
            logger.error(f"{operation} on {request.namespace} failed: {e}")
            return error(str(e), 500)
        finally:
            metrics.record_mongo_operation(
                operation,
                request.database,
                request.collection,
                time.perf_counter() - start,
                failed,
            )

        if result is None:
            return error(NOT_FOUND_MESSAGE, 404)

        try:
            return self.codec.encode(result), 200
        except EncodeError:
            logger.exception(f"Failed to encode {operation} result from {request.namespace}")
            return error(INTERNAL_ERROR_MESSAGE, 500)

    def _decode_fields(self, request):
        """Decode every domain-bearing field, naming the field on failure."""
        decoded = {}
        for name in ("document", "documents", "filter", "update", "projection", "sort", "pipeline"):
            value = getattr(request, name)
            if value is None:
                continue
            try:
                decoded[name] = self.codec.decode(value, name)
            except ExtendedJSONError as e:
                raise RequestError(f"Invalid {name}: {e}") from e
        return decoded

    # ------------------------------------------------------------------
    # One method per storage verb. Each returns a BSON-native envelope,
    # or None when a single-document read finds nothing.
    # ------------------------------------------------------------------

    def _insert_one(self, collection, request, decoded):
        result = collection.insert_one(decoded["document"])
        return {"insertedId": result.inserted_id}

    def _insert_many(self, collection, request, decoded):
        result = collection.insert_many(decoded["documents"], ordered=request.ordered)
        return {"insertedIds": list(result.inserted_ids)}

    def _find_one(self, collection, request, decoded):
        document = collection.find_one(
            decoded["filter"],
            decoded.get("projection"),
            sort=sort_spec(decoded.get("sort")),
            skip=request.skip,
        )
        if document is None:
            return None
        return {"document": document}

    def _find(self, collection, request, decoded):
        cursor = collection.find(
            decoded["filter"],
            decoded.get("projection"),
            sort=sort_spec(decoded.get("sort")),
            skip=request.skip,
            limit=request.limit,
        )
        return {"documents": list(cursor)}

    def _update(self, collection, request, decoded):
        if request.operation == UPDATE_ONE:
            method = collection.update_one
        else:
            method = collection.update_many
        result = method(decoded["filter"], decoded["update"], upsert=request.upsert)
        return {
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
            "upsertedCount": 0 if result.upserted_id is None else 1,
            "upsertedId": result.upserted_id,
        }

    def _delete(self, collection, request, decoded):
        if request.operation == DELETE_ONE:
            result = collection.delete_one(decoded["filter"])
        else:
            result = collection.delete_many(decoded["filter"])
        return {"deletedCount": result.deleted_count}

    def _aggregate(self, collection, request, decoded):
        return {"documents": list(collection.aggregate(decoded["pipeline"]))}
