import argparse
import functools
import logging
import shlex
import sys
from typing import Any, Dict, List, Optional

from prometheus_client import CollectorRegistry, generate_latest

from . import __version__
from .address import AddressEncoder
from .config import ExporterConfig, parse_listen
from .daemon import ExporterDaemon
from .metrics import ChainStateCollector
from .scrape import ScrapeOrchestrator
from .session import bootstrap, open_session
from .types import ExporterSetupError


def setup_logging(level: str = "INFO", debug: bool = False):
    """Configure logging with the specified level."""
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(log_level)
    formatter = logging.Formatter(
        '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S%z'
    )
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    # substrate-interface logs every RPC frame at DEBUG
    if not debug:
        logging.getLogger("substrateinterface").setLevel(logging.WARNING)

    log = logging.getLogger("chain-state-exporter")
    log.setLevel(log_level)
    return log


def build_registry(config: ExporterConfig,
                   type_registry: Optional[Dict[str, Any]] = None) -> CollectorRegistry:
    """Wire session factory, orchestrator and collector into a fresh registry."""
    orchestrator = ScrapeOrchestrator(
        session_factory=functools.partial(open_session, config, type_registry),
        address_encoder=AddressEncoder(config.ss58_format),
    )
    registry = CollectorRegistry()
    registry.register(ChainStateCollector(orchestrator, namespace=config.namespace))
    return registry


def build_parser() -> argparse.ArgumentParser:
    """Build the command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="chain-state-exporter",
        description="Prometheus exporter for Darwinia chain state."
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-e", "--ws-endpoint",
        dest="endpoint",
        metavar="ws|wss://",
        help="Node websocket endpoint (default: $CHAIN_STATE_WS_ENDPOINT or ws://127.0.0.1:9944)."
    )
    common.add_argument(
        "--types-file",
        help="Path to a custom types JSON file (default: $CHAIN_STATE_TYPES_FILE, none)."
    )
    common.add_argument(
        "--ss58-format",
        type=int,
        help="SS58 address format used for the address label (default: 18)."
    )
    common.add_argument(
        "--namespace",
        help="Metric name prefix (default: darwinia_state)."
    )
    common.add_argument(
        "--rpc-timeout",
        type=float,
        help="Websocket socket timeout in seconds (default: 10)."
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, ignored if --debug is used)."
    )
    common.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output, including RPC traffic."
    )

    subparsers = parser.add_subparsers(dest="cmd", required=True)

    serve_parser = subparsers.add_parser(
        "serve",
        parents=[common],
        help="Serve metrics over HTTP; every scrape queries the node."
    )
    serve_parser.add_argument(
        "--listen",
        metavar="[ADDR]:PORT",
        help="Exporter listen address (default: $CHAIN_STATE_LISTEN or :9602)."
    )
    serve_parser.add_argument(
        "--metrics-path",
        metavar="PATH",
        help="Exposed metrics path (default: /metrics)."
    )

    subparsers.add_parser(
        "scrape",
        parents=[common],
        help="Run a single scrape and print the metrics to stdout."
    )

    return parser


def config_from_args(parsed_args: argparse.Namespace) -> ExporterConfig:
    return ExporterConfig.from_env(
        endpoint=parsed_args.endpoint,
        listen=getattr(parsed_args, "listen", None),
        metrics_path=getattr(parsed_args, "metrics_path", None),
        types_file=parsed_args.types_file,
        ss58_format=parsed_args.ss58_format,
        namespace=parsed_args.namespace,
        rpc_timeout=parsed_args.rpc_timeout,
        log_level=parsed_args.log_level,
        debug=parsed_args.debug,
    )


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    if isinstance(args, list) and len(args) == 1 and isinstance(args[0], str):
        args = shlex.split(args[0])

    parser = build_parser()
    parsed_args = parser.parse_args(args)
    config = config_from_args(parsed_args)

    log = setup_logging(config.log_level, debug=config.debug)
    log.debug(f"Configuration: {config}")

    if parsed_args.cmd == "serve":
        try:
            parse_listen(config.listen)
        except ValueError as e:
            log.error(str(e))
            return 1
        print(f"Chain State Exporter {__version__}")

    try:
        type_registry = bootstrap(config)
    except ExporterSetupError as e:
        log.critical(str(e))
        return 1

    registry = build_registry(config, type_registry)

    if parsed_args.cmd == "scrape":
        sys.stdout.write(generate_latest(registry).decode("utf-8"))
        return 0

    daemon = ExporterDaemon(config, registry)
    try:
        daemon.start()
    except OSError as e:
        log.critical(f"Cannot serve on {config.listen}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
