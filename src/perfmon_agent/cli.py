"""CLI interface for perfmon_agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import NoReturn

from . import __version__
from .collector import default_source
from .collector.classifier import classify
from .collector.manager import Dispatcher
from .config import (
    DEFAULT_COMPUTER_NAME,
    DEFAULT_CONFIG_FILE,
    POLLING_INTERVAL_FLOOR_MS,
    ConfigError,
    OtelExporterConfig,
    Options,
    load_counters,
    resolve_options,
)
from .exporter.base import BaseExporter, EmissionError
from .exporter.stream import MetricEmitter
from .log import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_EMISSION_FAILURE = 2


class _ArgumentParser(argparse.ArgumentParser):
    """Prints help and exits 1 on bad arguments instead of argparse's 2."""

    def error(self, message: str) -> NoReturn:
        self.print_help(sys.stderr)
        self.exit(EXIT_STARTUP_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="perfmon-agent",
        description="Collect Windows performance counters and WMI data as JSON records",
        add_help=False,
    )
    parser.add_argument("-?", "-h", "--help", action="help", help="Show this help and exit")
    parser.add_argument(
        "-c", "--configFile", dest="config_file", default=DEFAULT_CONFIG_FILE,
        help="Config file to use",
    )
    parser.add_argument(
        "-i", "--pollInt", dest="polling_interval", type=int, default=POLLING_INTERVAL_FLOOR_MS,
        help=f"Frequency of polling (ms), at least {POLLING_INTERVAL_FLOOR_MS}",
    )
    parser.add_argument(
        "-n", "--compName", dest="computer_name", default=DEFAULT_COMPUTER_NAME,
        help="Name of computer that you want to poll",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Verbose logging & pretty-print (for testing purposes)",
    )
    parser.add_argument(
        "--otlp-endpoint", dest="otlp_endpoint", default="",
        help="Also forward numeric values to this OTLP/HTTP endpoint",
    )
    parser.add_argument("--version", action="version", version=f"perfmon-agent {__version__}")
    return parser


def _exporters(options: Options) -> tuple[MetricEmitter, list[BaseExporter]]:
    emitter = MetricEmitter(sys.stdout, pretty=options.verbose)
    exporters: list[BaseExporter] = [emitter]
    if options.otlp_endpoint:
        from .exporter.otel import OtelExporter

        otel_exp = OtelExporter(OtelExporterConfig(
            endpoint=options.otlp_endpoint,
            export_interval_ms=options.polling_interval,
        ))
        emitter.add_sink(otel_exp.export)
        exporters.append(otel_exp)
    return emitter, exporters


def main(argv: list[str] | None = None) -> None:
    """Entry point for the perfmon-agent CLI."""
    args = build_parser().parse_args(argv)

    configure_logging(args.verbose)
    options = resolve_options(
        config_file=args.config_file,
        polling_interval=args.polling_interval,
        computer_name=args.computer_name,
        verbose=args.verbose,
        otlp_endpoint=args.otlp_endpoint,
    )

    try:
        specs = load_counters(options.config_file)
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(EXIT_STARTUP_FAILURE)

    emitter, exporters = _exporters(options)
    dispatcher = Dispatcher(
        options,
        classify(specs),
        default_source(options.computer_name),
        emitter,
        logger=logging.getLogger("perfmon_agent.collector"),
    )

    def _handle_signal(_sig: int, _frame: object) -> None:
        logger.info("Received signal %d, stopping", _sig)
        dispatcher.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    code = EXIT_OK
    try:
        dispatcher.run()
    except EmissionError:
        code = EXIT_EMISSION_FAILURE
    finally:
        for exp in exporters:
            exp.shutdown()
    sys.exit(code)


if __name__ == "__main__":
    main()
