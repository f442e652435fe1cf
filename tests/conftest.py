from types import SimpleNamespace

import pytest
from bson.objectid import ObjectId
from pymongo.errors import OperationFailure

from mongo_bridge.app import create_app
from mongo_bridge.config import Settings

API_KEY = "test_key"


def _matches(document, filter):
    return all(document.get(key) == value for key, value in filter.items())


def _project(document, projection):
    if not projection:
        return dict(document)
    # inclusion only; fields keep the stored document's order
    return {
        key: value
        for key, value in document.items()
        if projection.get(key, 1 if key == "_id" else 0)
    }


class FakeCollection:
    """
    In-memory stand-in for a pymongo Collection.

    Filters are top-level equality matches only; that is all the tests
    need. Every call is recorded so tests can inspect what the bridge
    handed to the driver.
    """

    def __init__(self, name):
        self.name = name
        self.documents = []
        self.calls = []
        self.fail_with = None

    def _call(self, method, *args, **kwargs):
        self.calls.append((method, args, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def insert_one(self, document):
        self._call("insert_one", document)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    def insert_many(self, documents, ordered=True):
        self._call("insert_many", documents, ordered=ordered)
        for document in documents:
            document.setdefault("_id", ObjectId())
            self.documents.append(document)
        return SimpleNamespace(inserted_ids=[document["_id"] for document in documents])

    def find(self, filter=None, projection=None, sort=None, skip=0, limit=0):
        self._call("find", filter, projection, sort=sort, skip=skip, limit=limit)
        found = [d for d in self.documents if _matches(d, filter or {})]
        for key, direction in reversed(sort or []):
            found.sort(key=lambda d: d.get(key), reverse=direction == -1)
        found = found[skip:]
        if limit:
            found = found[:limit]
        return [_project(d, projection) for d in found]

    def find_one(self, filter=None, projection=None, sort=None, skip=0):
        found = self.find(filter, projection, sort=sort, skip=skip, limit=1)
        return found[0] if found else None

    def _update(self, method, filter, update, upsert, many):
        self._call(method, filter, update, upsert=upsert)
        matched = [d for d in self.documents if _matches(d, filter)]
        if not many:
            matched = matched[:1]
        for document in matched:
            document.update(update.get("$set", {}))
        upserted_id = None
        if not matched and upsert:
            document = dict(filter, **update.get("$set", {}))
            document.setdefault("_id", ObjectId())
            self.documents.append(document)
            upserted_id = document["_id"]
        return SimpleNamespace(
            matched_count=len(matched),
            modified_count=len(matched),
            upserted_id=upserted_id,
        )

    def update_one(self, filter, update, upsert=False):
        return self._update("update_one", filter, update, upsert, many=False)

    def update_many(self, filter, update, upsert=False):
        return self._update("update_many", filter, update, upsert, many=True)

    def _delete(self, method, filter, many):
        self._call(method, filter)
        matched = [d for d in self.documents if _matches(d, filter)]
        if not many:
            matched = matched[:1]
        for document in matched:
            self.documents.remove(document)
        return SimpleNamespace(deleted_count=len(matched))

    def delete_one(self, filter):
        return self._delete("delete_one", filter, many=False)

    def delete_many(self, filter):
        return self._delete("delete_many", filter, many=True)

    def aggregate(self, pipeline):
        self._call("aggregate", pipeline)
        documents = list(self.documents)
        for stage in pipeline:
            (operator, argument), = stage.items()
            if operator == "$match":
                documents = [d for d in documents if _matches(d, argument)]
            elif operator == "$project":
                documents = [_project(d, argument) for d in documents]
            else:
                raise OperationFailure(f"Unrecognized pipeline stage name: '{operator}'")
        return iter(documents)


class FakeStorage:
    def __init__(self):
        self.collections = {}
        self.closed = False

    def collection(self, database, collection):
        key = (database, collection)
        if key not in self.collections:
            self.collections[key] = FakeCollection(collection)
        return self.collections[key]

    def close(self):
        self.closed = True


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def settings():
    return Settings(environ={"API_KEY": API_KEY, "SLOW_REQUEST_MS": "0"})


@pytest.fixture
def app(settings, storage):
    app = create_app(settings, storage)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def call(client):
    """POST an operation with a valid API key, return (status, json)."""
    def post(operation, body):
        response = client.post(f"/api/{operation}", json=body, headers={"apiKey": API_KEY})
        return response.status_code, response.get_json()
    return post
