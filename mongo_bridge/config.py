"""
Bridge configuration from environment variables.

    MONGO_URI                 mongodb://localhost:27017
    API_KEY                   shared secret (random key generated if unset)
    HOST                      0.0.0.0
    PORT                      3000
    EJSON_MODE                canonical | relaxed
    REQUEST_TIMEOUT_MS        10000
    MONGO_CONNECT_TIMEOUT_MS  10000
    SLOW_REQUEST_MS           100
    LOG_LEVEL                 INFO
"""

import os
import secrets

from .extjson import MODES


class ConfigError(Exception):
    """Raised for configuration values that cannot be used."""


class Settings:
    # (default, type)
    CONFIG_DEFAULTS = {
        "MONGO_URI": ("mongodb://localhost:27017", str),
        "API_KEY": (None, str),
        "HOST": ("0.0.0.0", str),
        "PORT": (3000, int),
        "EJSON_MODE": ("canonical", str),
        "REQUEST_TIMEOUT_MS": (10000, int),
        "MONGO_CONNECT_TIMEOUT_MS": (10000, int),
        "SLOW_REQUEST_MS": (100, int),
        "LOG_LEVEL": ("INFO", str),
    }

    def __init__(self, environ=None, **overrides):
        self.values = {}
        self.api_key_generated = False
        self._load_config(os.environ if environ is None else environ)
        for key, value in overrides.items():
            if value is not None:
                self.values[key.upper()] = value
        self._validate()

    def _load_config(self, environ):
        for key, (default_value, type_) in self.CONFIG_DEFAULTS.items():
            value = environ.get(key)
            if value is None or value == "":
                self.values[key] = default_value
                continue
            try:
                self.values[key] = type_(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {key}: {e}")

        if not self.values["API_KEY"]:
            self.values["API_KEY"] = secrets.token_urlsafe(32)
            self.api_key_generated = True

    def _validate(self):
        mode = self.values["EJSON_MODE"] = self.values["EJSON_MODE"].lower()
        if mode not in MODES:
            raise ConfigError(f"EJSON_MODE must be one of {', '.join(MODES)}, got {mode!r}")
        for key in ("PORT", "REQUEST_TIMEOUT_MS", "MONGO_CONNECT_TIMEOUT_MS"):
            if self.values[key] <= 0:
                raise ConfigError(f"{key} must be positive")
        if self.values["SLOW_REQUEST_MS"] < 0:
            raise ConfigError("SLOW_REQUEST_MS must not be negative")

    @property
    def request_timeout(self):
        """Per-request storage timeout in seconds."""
        return self.values["REQUEST_TIMEOUT_MS"] / 1000.0

    def __getattr__(self, name):
        values = self.__dict__.get("values", {})
        if name in values:
            return values[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")
