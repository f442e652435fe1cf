import datetime

import pytest
from bson.int64 import Int64
from bson.objectid import ObjectId
from pymongo.errors import DuplicateKeyError, InvalidName, ServerSelectionTimeoutError

from mongo_bridge.dispatcher import Dispatcher
from mongo_bridge.extjson import RELAXED, ExtendedJSONCodec

OID = "65a1f0c2e4b0a1b2c3d4e5f6"
BASE = {"database": "shop", "collection": "orders"}


@pytest.fixture
def dispatcher(storage):
    return Dispatcher(storage, request_timeout=5)


@pytest.fixture
def orders(storage):
    return storage.collection("shop", "orders")


def body(**fields):
    return dict(BASE, **fields)


def test_insert_one_decodes_document(dispatcher, orders):
    payload, status = dispatcher.dispatch("insertOne", body(document={
        "_id": {"$oid": OID},
        "placed": {"$date": "2024-01-01T00:00:00Z"},
        "qty": 2,
    }))
    assert status == 200
    assert payload == {"insertedId": {"$oid": OID}}

    stored = orders.documents[0]
    assert stored["_id"] == ObjectId(OID)
    assert stored["placed"] == datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    assert isinstance(stored["qty"], Int64)


def test_insert_many(dispatcher, orders):
    payload, status = dispatcher.dispatch("insertMany", body(documents=[{"a": 1}, {"a": 2}], ordered=False))
    assert status == 200
    assert len(payload["insertedIds"]) == 2
    assert all(set(item) == {"$oid"} for item in payload["insertedIds"])
    method, args, kwargs = orders.calls[0]
    assert method == "insert_many"
    assert kwargs == {"ordered": False}


def test_filter_is_decoded_before_storage_call(dispatcher, orders):
    orders.documents.append({"_id": ObjectId(OID), "name": "first"})
    payload, status = dispatcher.dispatch("findOne", body(filter={"_id": {"$oid": OID}}))
    assert status == 200
    assert payload == {"document": {"_id": {"$oid": OID}, "name": "first"}}
    method, args, kwargs = orders.calls[0]
    assert args[0] == {"_id": ObjectId(OID)}


def test_find_one_not_found(dispatcher):
    payload, status = dispatcher.dispatch("findOne", body(filter={"name": "nobody"}))
    assert status == 404
    assert payload == {"error": "No document found"}


def test_find_passes_options(dispatcher, orders):
    orders.documents.extend({"n": n} for n in range(5))
    payload, status = dispatcher.dispatch("find", body(sort={"n": -1}, skip=1, limit=2))
    assert status == 200
    assert [d["n"] for d in payload["documents"]] == [3, 2]
    method, args, kwargs = orders.calls[0]
    assert kwargs == {"sort": [("n", -1)], "skip": 1, "limit": 2}


def test_find_sort_pairs(dispatcher, orders):
    dispatcher.dispatch("find", body(sort=[["b", 1], ["a", -1]]))
    method, args, kwargs = orders.calls[0]
    assert kwargs["sort"] == [("b", 1), ("a", -1)]


def test_find_encodes_floats_per_mode(storage, orders):
    orders.documents.append({"price": 9.5})
    canonical = Dispatcher(storage)
    relaxed = Dispatcher(storage, codec=ExtendedJSONCodec(RELAXED))

    payload, _ = canonical.dispatch("find", body())
    assert payload["documents"][0]["price"] == {"$numberDouble": "9.5"}
    payload, _ = relaxed.dispatch("find", body())
    assert payload["documents"][0]["price"] == 9.5


def test_update_one(dispatcher, orders):
    orders.documents.append({"_id": ObjectId(OID), "status": "open"})
    payload, status = dispatcher.dispatch("updateOne", body(
        filter={"_id": {"$oid": OID}},
        update={"$set": {"status": "shipped", "shippedAt": {"$date": 1704067200000}}},
    ))
    assert status == 200
    assert payload == {"matchedCount": 1, "modifiedCount": 1, "upsertedCount": 0, "upsertedId": None}
    assert orders.documents[0]["shippedAt"].year == 2024


def test_update_many_upsert(dispatcher, orders):
    payload, status = dispatcher.dispatch("updateMany", body(
        filter={"sku": "x"},
        update={"$set": {"qty": 1}},
        upsert=True,
    ))
    assert status == 200
    assert payload["matchedCount"] == 0
    assert payload["upsertedCount"] == 1
    assert set(payload["upsertedId"]) == {"$oid"}
    method, args, kwargs = orders.calls[0]
    assert method == "update_many"
    assert kwargs == {"upsert": True}


def test_delete(dispatcher, orders):
    orders.documents.extend([{"s": "a"}, {"s": "a"}, {"s": "b"}])
    payload, status = dispatcher.dispatch("deleteOne", body(filter={"s": "a"}))
    assert (payload, status) == ({"deletedCount": 1}, 200)
    payload, status = dispatcher.dispatch("deleteMany", body(filter={}))
    assert (payload, status) == ({"deletedCount": 2}, 200)


def test_aggregate_keeps_stage_key_order(dispatcher, orders):
    orders.documents.append({"_id": ObjectId(OID), "c": 3, "b": 2, "a": 1})
    payload, status = dispatcher.dispatch("aggregate", body(pipeline=[
        {"$match": {"_id": {"$oid": OID}}},
        {"$project": {"_id": 0, "b": 1, "a": 1}},
    ]))
    assert status == 200
    assert list(payload["documents"][0]) == ["b", "a"]
    method, args, kwargs = orders.calls[0]
    assert list(args[0][1]["$project"]) == ["_id", "b", "a"]


def test_decode_error_is_client_error_and_skips_storage(dispatcher, orders):
    payload, status = dispatcher.dispatch("find", body(filter={"_id": {"$oid": "not-hex"}}))
    assert status == 400
    assert payload["error"].startswith("Invalid filter: invalid object id for $oid at filter._id")
    assert orders.calls == []


def test_decode_error_names_field(dispatcher):
    payload, status = dispatcher.dispatch("updateOne", body(
        filter={},
        update={"$set": {"at": {"$date": "soon"}}},
    ))
    assert status == 400
    assert payload["error"].startswith("Invalid update: invalid date for $date at update.$set.at")


def test_envelope_error(dispatcher, storage):
    payload, status = dispatcher.dispatch("find", {"collection": "orders"})
    assert status == 400
    assert "database" in payload["error"]
    assert storage.collections == {}


def test_storage_error_passes_message_through(dispatcher, orders):
    orders.fail_with = DuplicateKeyError("E11000 duplicate key error")
    payload, status = dispatcher.dispatch("insertOne", body(document={"a": 1}))
    assert status == 500
    assert payload == {"error": "E11000 duplicate key error"}


def test_storage_timeout_is_server_error(dispatcher, orders):
    orders.fail_with = ServerSelectionTimeoutError("No servers found yet")
    payload, status = dispatcher.dispatch("find", body())
    assert (payload, status) == ({"error": "No servers found yet"}, 500)


def test_invalid_pipeline_stage_is_server_error(dispatcher):
    payload, status = dispatcher.dispatch("aggregate", body(pipeline=[{"$bogus": {}}]))
    assert status == 500
    assert "$bogus" in payload["error"]


def test_encode_failure_is_generic_internal_error(dispatcher, orders):
    orders.documents.append({"weird": object()})
    payload, status = dispatcher.dispatch("find", body())
    assert status == 500
    assert payload == {"error": "Internal server error"}


def test_invalid_collection_name_is_client_error(dispatcher, storage):
    payload, status = dispatcher.dispatch("find", {"database": "shop", "collection": "bad$name"})
    assert status == 400
    assert "$" in payload["error"]
    assert storage.collections == {}


def test_collection_handle_failure_is_server_error(dispatcher, storage, monkeypatch):
    def refuse(database, collection):
        raise InvalidName("collection names must not contain '$'")

    monkeypatch.setattr(storage, "collection", refuse)
    payload, status = dispatcher.dispatch("find", body())
    assert (payload, status) == ({"error": "collection names must not contain '$'"}, 500)
