"""
MongoDB HTTP Bridge application
===============================
Nine POST endpoints, one per collection operation:

    POST /api/insertOne     {"database", "collection", "document"}
    POST /api/insertMany    {"database", "collection", "documents", "ordered"?}
    POST /api/findOne       {"database", "collection", "filter"?, "projection"?, "sort"?, "skip"?}
    POST /api/find          {... "filter"?, "projection"?, "sort"?, "limit"?, "skip"?}
    POST /api/updateOne     {"database", "collection", "filter"?, "update", "upsert"?}
    POST /api/updateMany    {"database", "collection", "filter"?, "update", "upsert"?}
    POST /api/deleteOne     {"database", "collection", "filter"}
    POST /api/deleteMany    {"database", "collection", "filter"}
    POST /api/aggregate     {"database", "collection", "pipeline"}

    GET  /api/health        no auth
    GET  /metrics           no auth, Prometheus text format

Every other request needs the shared secret in the ``apiKey`` (or
``X-API-Key``) header. ``X-API-Key`` is only read when ``apiKey`` is
absent or empty; a wrong ``apiKey`` is refused even if ``X-API-Key``
holds the right key.
"""

import secrets
import time
from functools import wraps

from flask import Flask, Response, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from . import metrics
from .config import Settings
from .dispatcher import Dispatcher
from .extjson import ExtendedJSONCodec
from .logger import logger
from .operations import OPERATIONS
from .storage import MongoStorage

API_KEY_HEADERS = ("apiKey", "X-API-Key")
OPERATION_PATHS = frozenset(f"/api/{operation}" for operation in OPERATIONS)


def _key_matches(provided, expected):
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_api_key(f):
    """Decorator to require the shared-secret header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config["API_KEY"]
        provided = None
        for header in API_KEY_HEADERS:
            provided = request.headers.get(header)
            if provided:
                break
        if not provided or not _key_matches(provided, expected):
            return jsonify({"error": "Forbidden: invalid API key"}), 403
        return f(*args, **kwargs)
    return decorated


def _operation_view(operation):
    @require_api_key
    def view():
        body = request.get_json(force=True, silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        payload, status = current_app.extensions["mongo_bridge"].dispatch(operation, body)
        return jsonify(payload), status

    view.__name__ = operation
    return view


def health():
    return jsonify({"status": "ok"})


def metrics_endpoint():
    body, content_type = metrics.render()
    return Response(body, content_type=content_type)


def _start_timer():
    g.request_start = time.perf_counter()


def _record_request(response):
    started = g.pop("request_start", None)
    if started is None:
        return response
    duration = time.perf_counter() - started
    status = response.status_code

    if duration * 1000 > current_app.config["SLOW_REQUEST_MS"] or status != 200:
        log = logger.warning if status >= 500 else logger.info
        log(f"Method: {request.method}, URL: {request.full_path.rstrip('?')}, "
            f"Status: {status}, Duration: {duration * 1000:.0f}ms")

    if request.path in OPERATION_PATHS:
        metrics.record_http_request(request.method, request.path, status, duration)
    return response


def _http_error(e):
    return jsonify({"error": e.description}), e.code


def create_app(settings=None, storage=None):
    """
    Build the Flask app.

    ``storage`` is the process-wide MongoStorage; one is created from
    ``settings`` when not supplied. The caller owns its shutdown.
    """
    if settings is None:
        settings = Settings()
    if storage is None:
        storage = MongoStorage(settings.MONGO_URI, settings.MONGO_CONNECT_TIMEOUT_MS)

    app = Flask(__name__)
    # pipeline stages and projections depend on key order
    app.json.sort_keys = False
    app.config["API_KEY"] = settings.API_KEY
    app.config["SLOW_REQUEST_MS"] = settings.SLOW_REQUEST_MS

    app.extensions["mongo_storage"] = storage
    app.extensions["mongo_bridge"] = Dispatcher(
        storage,
        codec=ExtendedJSONCodec(settings.EJSON_MODE),
        request_timeout=settings.request_timeout,
    )

    app.before_request(_start_timer)
    app.after_request(_record_request)
    app.register_error_handler(HTTPException, _http_error)

    app.add_url_rule("/api/health", "health", health, methods=["GET"])
    app.add_url_rule("/metrics", "metrics", metrics_endpoint, methods=["GET"])
    for operation in OPERATIONS:
        app.add_url_rule(f"/api/{operation}", operation, _operation_view(operation), methods=["POST"])

    return app
