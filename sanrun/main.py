# sanrun/main.py
import argparse
import logging
import signal
import sys
import threading

from rich.console import Console
from rich.table import Table

from sanrun import __version__
from sanrun.build import CargoBuilder
from sanrun.catalog import load_catalog, select_modes
from sanrun.config import SanrunConfig, SanrunConfigError
from sanrun.errors import CatalogError, ReportPersistenceError, SanrunError
from sanrun.locator import ArtifactLocator
from sanrun.logger import setup_sanrun_logger
from sanrun.orchestrator import EXIT_INTERNAL_ERROR, EXIT_PASS, Orchestrator
from sanrun.report import ReportWriter, render_summary
from sanrun.runner import ModeRunner

shutdown_event = threading.Event()


def signal_handler(sig, frame):
    """Stop after the current mode on SIGINT/SIGTERM."""
    print("\nReceived shutdown signal - finishing the current mode, skipping the rest...")
    shutdown_event.set()


def _mode_timeout(value: str):
    name, sep, seconds = value.partition("=")
    try:
        timeout = float(seconds)
    except ValueError:
        timeout = 0
    if not sep or not name or timeout <= 0:
        raise argparse.ArgumentTypeError(f"expected NAME=SECONDS, got {value!r}")
    return name, timeout


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        number = 0
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number of seconds, got {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sanrun",
        description="Build a native test suite and run it under sanitizers and Valgrind."
    )
    parser.add_argument("--version", action="version", version=f"sanrun {__version__}")
    parser.add_argument("--modes", default=None,
                        help="Comma-separated modes to run, in catalog order (default: all catalog modes).")
    parser.add_argument("--fail-fast", action="store_true", default=None,
                        help="Stop after the first fatal mode that fails; remaining modes are reported as SKIPPED.")
    parser.add_argument("--run-all", dest="fail_fast", action="store_false",
                        help="Run every mode whatever the earlier outcomes (default).")
    parser.set_defaults(fail_fast=None)
    parser.add_argument("--report-root", default=None,
                        help="Directory for mode logs and the summary (default: ./.output).")
    parser.add_argument("--build-root", default=None,
                        help="Directory for per-mode build output (default: ./target/sanrun).")
    parser.add_argument("--workspace", default=None,
                        help="Cargo workspace to build (default: current directory).")
    parser.add_argument("--timeout", type=_positive_float, default=None,
                        help="Timeout in seconds applied to every mode.")
    parser.add_argument("--mode-timeout", type=_mode_timeout, action="append", default=[], metavar="NAME=SECONDS",
                        help="Timeout override for one mode (repeatable).")
    parser.add_argument("--config", default=None,
                        help="Path to a JSON config file (default: ~/.sanrun/config.json).")
    parser.add_argument("--list-modes", action="store_true",
                        help="Print the selected modes and exit.")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Set the logging level.")
    parser.add_argument("--quiet", action="store_true",
                        help="Minimize console output (overrides log-level to WARNING, no summary table).")
    return parser


def apply_overrides(cfg: SanrunConfig, args: argparse.Namespace, logger: logging.Logger) -> None:
    """Command-line values win over the config file."""
    if args.modes:
        cfg.modes = [m.strip() for m in args.modes.split(",") if m.strip()]
        logger.debug(f"Using modes from CLI: {cfg.modes}")
    if args.fail_fast is not None:
        cfg.fail_fast = args.fail_fast
    if args.report_root:
        cfg.report_root = args.report_root
    if args.build_root:
        cfg.build_root = args.build_root
    if args.workspace:
        cfg.workspace = args.workspace
    if args.timeout:
        cfg.timeout = args.timeout
    if args.mode_timeout:
        timeouts = dict(cfg.mode_timeouts or {})
        timeouts.update(dict(args.mode_timeout))
        cfg.mode_timeouts = timeouts


def timeout_overrides(cfg: SanrunConfig, modes) -> dict:
    names = [m.name for m in modes]
    overrides = {}
    if cfg.timeout:
        overrides = {name: cfg.timeout for name in names}
    for name, value in (cfg.mode_timeouts or {}).items():
        if name not in names:
            raise CatalogError(f"timeout given for unknown or unselected mode '{name}'")
        overrides[name] = value
    return overrides


def list_modes(modes, console: Console) -> None:
    table = Table(title="Instrumentation modes", show_header=True, header_style="bold magenta")
    table.add_column("Mode", style="cyan")
    table.add_column("Rebuild")
    table.add_column("Flags")
    table.add_column("Wrapper")
    table.add_column("Timeout", justify="right")
    table.add_column("Classifier")
    for mode in modes:
        table.add_row(
            mode.name,
            "yes" if mode.requires_rebuild else "no",
            mode.rustflags or "-",
            " ".join(mode.wrapper) or "-",
            f"{mode.timeout:g}s" if mode.timeout else "-",
            mode.classifier.kind,
        )
    console.print(table)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # 1) Load configuration
    try:
        cfg = SanrunConfig.load(args.config)
    except SanrunConfigError as e:
        print(f"sanrun: {e}", file=sys.stderr)
        return EXIT_INTERNAL_ERROR

    # 2) Configure logging
    log_level = logging.getLevelName(args.log_level.upper())
    if args.quiet:
        log_level = logging.WARNING
    try:
        logger = setup_sanrun_logger(log_level, log_to_file=bool(cfg.log_to_file), log_to_console=True)
    except OSError as e:
        print(f"sanrun: cannot open log file: {e}", file=sys.stderr)
        return EXIT_INTERNAL_ERROR
    logger.info(f"Starting sanrun {__version__}")

    apply_overrides(cfg, args, logger)
    console = Console()

    # 3) Resolve the catalog and the modes to run
    try:
        cfg.validate()
        catalog = load_catalog(cfg.catalog)
        modes = select_modes(catalog, cfg.modes)
        overrides = timeout_overrides(cfg, modes)
    except (SanrunConfigError, CatalogError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_INTERNAL_ERROR

    if args.list_modes:
        list_modes(modes, console)
        return EXIT_PASS

    builder = CargoBuilder(
        command=cfg.cargo_command,
        workspace=cfg.workspace,
        profile=cfg.profile,
        test_args=cfg.test_args,
        fresh=bool(cfg.fresh_build),
        timeout=cfg.build_timeout,
        host_triple=cfg.host_triple,
    )
    locator = ArtifactLocator(profile=cfg.profile, pattern=cfg.artifact_pattern)
    runner = ModeRunner(builder, locator, cfg.build_root, timeout_overrides=overrides)
    writer = ReportWriter(cfg.report_root)

    shutdown_event.clear()
    orchestrator = Orchestrator(modes, runner, writer, fail_fast=bool(cfg.fail_fast), cancel_event=shutdown_event)

    # Register signal handlers, so a stop request lands between modes
    previous = {
        signal.SIGINT: signal.signal(signal.SIGINT, signal_handler),
        signal.SIGTERM: signal.signal(signal.SIGTERM, signal_handler),
    }

    # 4) Run
    try:
        report = orchestrator.run()
    except ReportPersistenceError as e:
        logger.error(f"Report could not be written, results are not trustworthy: {e}")
        return EXIT_INTERNAL_ERROR
    except SanrunError as e:
        logger.error(f"Orchestrator error: {e}")
        return EXIT_INTERNAL_ERROR
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return EXIT_INTERNAL_ERROR
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    if not args.quiet:
        render_summary(report, console)
    logger.info(f"sanrun finished: {report.outcome.value}")
    return report.exit_status


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
