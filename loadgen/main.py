"""Main entry point for the TSDB load generator."""
import argparse
import json
import logging
import signal
import sys

from prometheus_client import CollectorRegistry

from loadgen.config import load_config
from loadgen.control_api import ControlAPI
from loadgen.engine import LoadGeneratorEngine
from loadgen.metrics import LoadGeneratorMetrics, start_metrics_server


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    datefmt = "%Y-%m-%d %H:%M:%S"

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt=datefmt))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt=datefmt
        ))

    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="TSDB Load Generator - write and verify synthetic series per tenant"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("TSDB Load Generator")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Remote write URL: {config.remote_write.url}")
    logger.info(f"Write interval: {config.remote_write.interval_s}s")
    logger.info(f"Tenants: {config.tenants.count}, series per tenant: {config.series.count}")

    registry = CollectorRegistry()
    metrics = LoadGeneratorMetrics(registry=registry)

    try:
        engine = LoadGeneratorEngine(config, metrics)
    except ValueError as e:
        logger.error(f"Failed to initialize engine: {e}")
        sys.exit(1)

    start_metrics_server(registry, config.global_.metrics_port, config.global_.metrics_bind_address)
    engine.start()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        engine.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not config.global_.control_api_enabled:
        engine.wait()
        return

    # Run control API (blocking)
    control_api = ControlAPI(engine)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        engine.stop()
        sys.exit(1)

    logger.info("Control API stopped, shutting down...")
    engine.stop()


if __name__ == "__main__":
    main()
