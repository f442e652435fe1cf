"""MongoDB client handle owned by the process."""

import datetime
from urllib.parse import urlsplit, urlunsplit

from pymongo import MongoClient
from pymongo.server_api import ServerApi

from .logger import logger


def mask_uri(uri):
    """Hide the password in a connection string before it is logged."""
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    netloc = parts.netloc.replace(f":{parts.password}@", ":****@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


class MongoStorage:
    """
    Wraps one MongoClient for the life of the process.

    Created once at start-up and passed to the app factory. The client
    owns the connection pool and is safe to share between request
    threads.
    """

    def __init__(self, uri, connect_timeout_ms=10000, client=None):
        self.uri = uri
        if client is None:
            client = MongoClient(
                uri,
                tz_aware=True,
                tzinfo=datetime.timezone.utc,
                server_api=ServerApi("1"),
                serverSelectionTimeoutMS=connect_timeout_ms,
                connectTimeoutMS=connect_timeout_ms,
            )
        self.client = client

    def collection(self, database, collection):
        return self.client[database][collection]

    def ping(self):
        self.client.admin.command("ping")
        logger.info(f"Connected to MongoDB at {mask_uri(self.uri)}")

    def close(self):
        self.client.close()
        logger.info("MongoDB connection closed")
