"""
Run the bridge.

    export MONGO_URI="mongodb://localhost:27017"
    export API_KEY="your-secret-key-here"
    python -m mongo_bridge --port 3000

For HTTPS, put nginx in front or pass --ssl with --cert/--key.
"""

import argparse
import sys

from pymongo.errors import PyMongoError

from .app import create_app
from .config import ConfigError, Settings
from .extjson import MODES
from .logger import logger, setup_logging
from .storage import MongoStorage


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="MongoDB HTTP Bridge")
    parser.add_argument("--host", default=None, help="Host to bind to (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: $PORT or 3000)")
    parser.add_argument("--ejson-mode", choices=MODES, default=None,
                        help="How floats are written in responses (default: $EJSON_MODE or canonical)")
    parser.add_argument("--ssl", action="store_true", help="Enable HTTPS")
    parser.add_argument("--cert", default="cert.pem", help="SSL certificate file")
    parser.add_argument("--key", default="key.pem", help="SSL key file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        settings = Settings(host=args.host, port=args.port, ejson_mode=args.ejson_mode)
    except ConfigError as e:
        setup_logging()
        logger.critical(f"Configuration Error: {e}")
        return 1

    setup_logging(settings.LOG_LEVEL)

    if settings.api_key_generated:
        logger.warning("No API_KEY environment variable set! Generated temporary API key: "
                       f"{settings.API_KEY}")
        logger.warning("Set API_KEY in the environment so the key survives restarts")

    storage = MongoStorage(settings.MONGO_URI, settings.MONGO_CONNECT_TIMEOUT_MS)
    try:
        storage.ping()
    except PyMongoError as e:
        logger.critical(f"Error connecting to MongoDB: {e}")
        storage.close()
        return 1

    ssl_context = (args.cert, args.key) if args.ssl else None
    app = create_app(settings, storage)

    logger.info(f"Starting server on {settings.HOST}:{settings.PORT} "
                f"(SSL: {'enabled' if ssl_context else 'disabled'}, extended JSON: {settings.EJSON_MODE})")
    try:
        app.run(host=settings.HOST, port=settings.PORT, ssl_context=ssl_context, threaded=True)
    finally:
        storage.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
