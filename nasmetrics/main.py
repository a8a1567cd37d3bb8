"""Main entry point for the NIFCLOUD NAS metrics plugin."""
import argparse
import logging
import sys

from nasmetrics.config import load_config
from nasmetrics.errors import ConfigurationError
from nasmetrics.plugin import NasPlugin


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    # stdout carries plugin output
    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NIFCLOUD NAS metrics plugin for mackerel-agent"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    # Single-dash spellings match the flags existing agent configs pass
    parser.add_argument("--region", "-region", help="Region")
    parser.add_argument("--access-key-id", "-access-key-id", help="Access Key ID")
    parser.add_argument("--secret-access-key", "-secret-access-key", help="Secret Access Key")
    parser.add_argument("--identifier", "-identifier", help="NAS Instance Identifier")
    parser.add_argument("--metric-key-prefix", "-metric-key-prefix", help="Metric key prefix (default: nas)")
    parser.add_argument("--metric-label-prefix", "-metric-label-prefix", help="Metric Label prefix")
    parser.add_argument(
        "--tempfile", "-tempfile",
        help="Accepted for compatibility; no values are kept between runs",
    )
    parser.add_argument("--timeout", type=float, help="Deadline for one fetch cycle in seconds")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    return parser


def main(argv=None):
    """Main function."""
    args = build_parser().parse_args(argv)

    overrides = {
        "plugin": {
            "region": args.region,
            "access_key_id": args.access_key_id,
            "secret_access_key": args.secret_access_key,
            "identifier": args.identifier,
            "metric_key_prefix": args.metric_key_prefix,
            "metric_label_prefix": args.metric_label_prefix,
            "timeout_s": args.timeout,
        },
        "global": {"log_level": args.log_level},
    }

    # Load configuration
    try:
        config = load_config(args.config, overrides)
    except ConfigurationError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.debug(
        f"Region: {config.plugin.region}, identifier: {config.plugin.identifier}, "
        f"prefix: {config.plugin.metric_key_prefix}"
    )

    NasPlugin(config).run()


if __name__ == "__main__":
    main()
