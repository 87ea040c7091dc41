"""Command-line entry point: ``python -m analytics_stream``."""

from __future__ import annotations

import argparse
import logging

from .config import configure_logging, get_validated_config, load_config
from .dashboard.server import run_dashboard

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Realtime analytics dashboard server")
    parser.add_argument("--config", default=None, help="Path to config YAML")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    args = parser.parse_args(argv)

    load_config(args.config)
    config = get_validated_config()
    if args.log_level:
        config = config.model_copy(
            update={"logging": config.logging.model_copy(update={"level": args.log_level})}
        )
    configure_logging(config)
    logger.info("Starting dashboards: %s", ", ".join(config.dashboards.enabled_names()))

    run_dashboard(host=args.host, port=args.port, config=config)


if __name__ == "__main__":
    main()
