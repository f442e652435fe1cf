"""
Extended JSON codec
===================
Converts loosely-typed JSON coming from HTTP clients into BSON-native
Python values, and converts driver results back into JSON that keeps
the same type distinctions.

Wire format:
    A JSON object with exactly ONE key from the reserved set is a typed
    scalar. Everything else is literal data.

        {"$oid": "65a1f0c2e4b0a1b2c3d4e5f6"}        -> ObjectId
        {"$date": "2024-01-01T00:00:00Z"}            -> datetime (UTC)
        {"$date": 1704067200000}                     -> datetime (UTC)
        {"$numberDouble": "1.5"}                     -> float
        {"$numberLong": "9007199254740993"}          -> Int64
        {"$numberInt": "7"}                          -> Int64
        {"$numberDecimal": "0.10"}                   -> Decimal128

    {"$oid": "...", "extra": 1} is a plain two-key document, and
    {"$gt": 5} is a plain query operator document.

Numbers:
    Bare JSON integers become Int64 when they fit in 64 bits, otherwise
    float. Anything written with a fraction or exponent is a float.
"""

import math
import re
import datetime

from bson import json_util
from bson.int64 import Int64
from bson.objectid import ObjectId
from bson.decimal128 import Decimal128
from bson.json_util import CANONICAL_JSON_OPTIONS

CANONICAL = "canonical"
RELAXED = "relaxed"
MODES = (CANONICAL, RELAXED)

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Largest integer a float64 JSON consumer reads back exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

_HEX_OID = re.compile(r"^[0-9a-fA-F]{24}$")
_INTEGER = re.compile(r"^-?[0-9]{1,20}$")
_DECIMAL = re.compile(r"^-?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][-+]?[0-9]+)?$")
_RFC3339 = re.compile(
    r"^([0-9]{4})-([0-9]{2})-([0-9]{2})[Tt]([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?([Zz]|[+-][0-9]{2}:[0-5][0-9])$"
)
_SPECIAL_DOUBLES = {
    "Infinity": math.inf,
    "-Infinity": -math.inf,
    "NaN": math.nan,
}


class ExtendedJSONError(ValueError):
    """A reserved key carried a payload that does not parse."""

    reason = "invalid value"

    def __init__(self, key, path, value):
        self.key = key
        self.path = path
        self.value = value
        where = f" at {path}" if path else ""
        super().__init__(f"{self.reason} for {key}{where}: {value!r}")


class InvalidObjectId(ExtendedJSONError):
    reason = "invalid object id"


class InvalidDate(ExtendedJSONError):
    reason = "invalid date"


class InvalidNumber(ExtendedJSONError):
    reason = "invalid number"


class EncodeError(TypeError):
    """A value coming back from storage has no JSON representation."""


def _join(path, key):
    if not path:
        return str(key)
    return f"{path}.{key}"


def _parse_oid(payload, path):
    if not isinstance(payload, str) or not _HEX_OID.match(payload):
        raise InvalidObjectId("$oid", path, payload)
    return ObjectId(payload)


def _millis_to_datetime(millis, path, payload):
    try:
        return EPOCH + datetime.timedelta(milliseconds=millis)
    except OverflowError:
        raise InvalidDate("$date", path, payload)


def _truncate_to_millis(value):
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _parse_date(payload, path):
    if isinstance(payload, bool):
        raise InvalidDate("$date", path, payload)
    if isinstance(payload, int):
        return _millis_to_datetime(payload, path, payload)
    if isinstance(payload, dict) and list(payload) == ["$numberLong"]:
        millis = payload["$numberLong"]
        if not isinstance(millis, str) or not _INTEGER.match(millis):
            raise InvalidDate("$date", path, payload)
        return _millis_to_datetime(int(millis), path, payload)
    if not isinstance(payload, str):
        raise InvalidDate("$date", path, payload)

    match = _RFC3339.fullmatch(payload)
    if match is None:
        raise InvalidDate("$date", path, payload)
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    # digits past microseconds are dropped, not rounded
    microsecond = int((fraction or "")[:6].ljust(6, "0"))
    try:
        parsed = datetime.datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), microsecond,
            tzinfo=_parse_offset(offset),
        )
        parsed = parsed.astimezone(datetime.timezone.utc)
    except (ValueError, OverflowError):
        raise InvalidDate("$date", path, payload)
    return _truncate_to_millis(parsed)


def _parse_offset(offset):
    if offset in ("Z", "z"):
        return datetime.timezone.utc
    sign = -1 if offset[0] == "-" else 1
    delta = datetime.timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6]))
    # timezone() raises ValueError for offsets of 24h or more
    return datetime.timezone(sign * delta)


def _parse_double(payload, path):
    if not isinstance(payload, str):
        raise InvalidNumber("$numberDouble", path, payload)
    if payload in _SPECIAL_DOUBLES:
        return _SPECIAL_DOUBLES[payload]
    if not _DECIMAL.match(payload):
        raise InvalidNumber("$numberDouble", path, payload)
    value = float(payload)
    if math.isinf(value):
        # "1e999" is not a way to spell Infinity
        raise InvalidNumber("$numberDouble", path, payload)
    return value


def _parse_integer(key, payload, path, low, high):
    if not isinstance(payload, str) or not _INTEGER.match(payload):
        raise InvalidNumber(key, path, payload)
    value = int(payload)
    if not low <= value <= high:
        raise InvalidNumber(key, path, payload)
    return Int64(value)


def _parse_long(payload, path):
    return _parse_integer("$numberLong", payload, path, INT64_MIN, INT64_MAX)


def _parse_int(payload, path):
    return _parse_integer("$numberInt", payload, path, INT32_MIN, INT32_MAX)


def _parse_decimal(payload, path):
    if not isinstance(payload, str):
        raise InvalidNumber("$numberDecimal", path, payload)
    try:
        return Decimal128(payload)
    except (ValueError, ArithmeticError):
        raise InvalidNumber("$numberDecimal", path, payload)


RESERVED_KEYS = {
    "$oid": _parse_oid,
    "$date": _parse_date,
    "$numberDouble": _parse_double,
    "$numberLong": _parse_long,
    "$numberInt": _parse_int,
    "$numberDecimal": _parse_decimal,
}


def format_datetime(value):
    """
    Render a datetime as RFC 3339 in UTC with millisecond precision.

    Like bson.json_util, the fraction is only written when it is non-zero,
    so "2024-01-01T00:00:00Z" comes back unchanged.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    value = value.astimezone(datetime.timezone.utc)
    millis = value.microsecond // 1000
    fraction = f".{millis:03d}" if millis else ""
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
        f"{fraction}Z"
    )


def format_double(value):
    """String form used inside {"$numberDouble": ...}."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return repr(value)


class ExtendedJSONCodec:
    """
    Decode/encode between client JSON and BSON-native values.

    The codec holds only its output mode, so a single instance is shared
    by every request.
    """

    def __init__(self, mode=CANONICAL):
        if mode not in MODES:
            raise ValueError(f"unknown extended JSON mode: {mode!r}")
        self.mode = mode

    @property
    def relaxed(self):
        return self.mode == RELAXED

    # ------------------------------------------------------------------
    # JSON -> BSON-native
    # ------------------------------------------------------------------

    def decode(self, value, path=""):
        """
        Decode a parsed JSON value.

        ``path`` prefixes the location reported in errors, normally the
        request field name ("filter", "pipeline", ...). Any failure
        aborts the whole value.
        """
        if value is None or isinstance(value, (bool, str)):
            return value
        if isinstance(value, int):
            if INT64_MIN <= value <= INT64_MAX:
                return Int64(value)
            try:
                return float(value)
            except OverflowError:
                raise InvalidNumber("integer", path, value)
        if isinstance(value, float):
            return value
        if isinstance(value, list):
            return [self.decode(item, _join(path, index)) for index, item in enumerate(value)]
        if isinstance(value, dict):
            if len(value) == 1:
                key, payload = next(iter(value.items()))
                parser = RESERVED_KEYS.get(key)
                if parser is not None:
                    return parser(payload, path)
            return {key: self.decode(item, _join(path, key)) for key, item in value.items()}
        raise TypeError(f"not a JSON value at {path or '<root>'}: {type(value).__name__}")

    # ------------------------------------------------------------------
    # BSON-native -> JSON
    # ------------------------------------------------------------------

    def encode(self, value):
        """Encode a driver value into a JSON-safe tree."""
        if value is None or isinstance(value, (bool, str)):
            return value
        if isinstance(value, int):
            if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
                return int(value)
            return {"$numberLong": str(int(value))}
        if isinstance(value, float):
            if self.relaxed and math.isfinite(value):
                return value
            return {"$numberDouble": format_double(value)}
        if isinstance(value, ObjectId):
            return {"$oid": str(value)}
        if isinstance(value, datetime.datetime):
            return {"$date": format_datetime(value)}
        if isinstance(value, Decimal128):
            return {"$numberDecimal": str(value)}
        if isinstance(value, (list, tuple)):
            return [self.encode(item) for item in value]
        if isinstance(value, dict):
            encoded = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise EncodeError(f"document key must be a string, got {type(key).__name__}")
                encoded[key] = self.encode(item)
            return encoded
        return self._encode_other(value)

    def _encode_other(self, value):
        # Binary, Regex, Timestamp, Code, MinKey, MaxKey, DBRef
        try:
            rendered = json_util.default(value, json_options=CANONICAL_JSON_OPTIONS)
        except (TypeError, ValueError) as e:
            raise EncodeError(f"cannot encode {type(value).__name__}: {e}") from e
        return self.encode(rendered)
