"""MongoDB HTTP Bridge: REST access to MongoDB collections over Extended JSON."""

from .app import create_app
from .extjson import (
    EncodeError,
    ExtendedJSONCodec,
    ExtendedJSONError,
    InvalidDate,
    InvalidNumber,
    InvalidObjectId,
)

__version__ = "1.0.0"

__all__ = [
    "create_app",
    "EncodeError",
    "ExtendedJSONCodec",
    "ExtendedJSONError",
    "InvalidDate",
    "InvalidNumber",
    "InvalidObjectId",
]
