import argparse
import os

import uvicorn

from constants import Settings
from logging_config import setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    defaults = Settings()
    parser = argparse.ArgumentParser(description="Rendezvous and UDP hole-punch server for snes-online")
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument("--udp-port", type=int, default=defaults.udp_port,
                        help="UDP punch port (default: same as --port)")
    parser.add_argument("--default-ttl", type=int, default=defaults.default_ttl_seconds)
    parser.add_argument("--max-ttl", type=int, default=defaults.max_ttl_seconds)
    parser.add_argument("--api-key", default=defaults.api_key)
    parser.add_argument("--log-connections", action="store_true", default=defaults.log_connections)
    parser.add_argument("--apk", "--apk-path", dest="apk_path", default=defaults.apk_path)
    parser.add_argument("--zip", "--zip-path", dest="zip_path", default=defaults.zip_path)
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", default=os.getenv("LOG_FILE", None))
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        host=args.host,
        port=args.port,
        udp_port=args.udp_port,
        default_ttl_seconds=args.default_ttl,
        max_ttl_seconds=args.max_ttl,
        api_key=args.api_key,
        log_connections=args.log_connections,
        apk_path=args.apk_path,
        zip_path=args.zip_path,
    )


def main(argv=None):
    args = parse_args(argv)
    # Setup logging before importing app
    setup_logging(log_level=args.log_level, log_file=args.log_file)

    from app import create_app
    from logging_config import get_logger

    logger = get_logger(__name__)
    settings = settings_from_args(args)
    logger.info(f"Starting room server on {settings.host}:{settings.port} (udp {settings.effective_udp_port})")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
