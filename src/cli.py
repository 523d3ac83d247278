#!/usr/bin/env python3
"""CLI entry point for converge.

Usage:
    converge apply <path> [--state FILE] [--workers N] [--json-output] [--verbose]
    converge destroy [<path>] [--force] [--yes]
    converge plan <path> [--json-output]
    converge validate <path>

<path> is a resource file or a directory of *.yaml resource files.

Exit codes:
    0: success
    1: one or more resources failed, were blocked or failed to destroy
    2: invalid arguments, settings, resource graph or unreadable state
    130: cancelled (Ctrl-C)
"""

import argparse
import contextlib
import json
import logging
import signal
import sys
import threading
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

from config import ConfigError, Settings, load_settings
from engine import (
    EngineError,
    GraphError,
    ResourceExecutor,
    ResourceGraph,
    RetryPolicy,
    StateIOError,
    StateStore,
    UnknownResourceTypeError,
)
from providers import default_registry
from reporting import RunReport, format_summary
from resources import load_resources

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

VERB_COMMANDS = {
    "apply": "Create or update declared resources",
    "destroy": "Destroy every resource recorded in state",
    "plan": "Show what apply would do",
    "validate": "Check resource files and the dependency graph",
}

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    try:
        return version('converge')
    except PackageNotFoundError:
        return 'dev'


def print_usage():
    """Print top-level usage showing verb commands."""
    print(f"converge {get_version()}")
    print()
    print("Usage: converge <command> [options]")
    print()
    print("Commands:")
    for verb, desc in VERB_COMMANDS.items():
        print(f"  {verb:<12} {desc}")
    print()
    print("Run 'converge <command> --help' for command-specific options.")


def _common_parser(verb: str, path_required: bool = True) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'converge {verb}',
        description=VERB_COMMANDS[verb],
    )
    parser.add_argument(
        'path',
        nargs=None if path_required else '?',
        type=Path,
        help='Resource file or directory of resource files',
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Settings file (default: $CONVERGE_HOME/config.yaml)',
    )
    parser.add_argument(
        '--state',
        type=Path,
        help='State file (override: CONVERGE_STATE env var)',
    )
    parser.add_argument(
        '--workers', '-w',
        type=int,
        help='Maximum concurrent provider operations',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_settings(args) -> Settings:
    """Load settings and apply command line overrides."""
    settings = load_settings(args.config)
    if args.state:
        settings.state_path = args.state
    if args.workers is not None:
        settings.max_workers = args.workers
        settings.validate()
    return settings


def _make_executor(settings: Settings, registry) -> ResourceExecutor:
    return ResourceExecutor(
        registry=registry,
        store=StateStore(settings.state_path),
        max_workers=settings.max_workers,
        retry=RetryPolicy(
            attempts=settings.retry_attempts,
            delay=settings.retry_delay,
            max_delay=settings.retry_max_delay,
        ),
    )


@contextlib.contextmanager
def _cancel_on_interrupt(executor: ResourceExecutor):
    """Turn the first Ctrl-C into a graceful cancel; the second one aborts."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(_signum, _frame):
        if executor.cancelled:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        print("\nInterrupted, waiting for in-flight operations (Ctrl-C again to abort)",
              file=sys.stderr)
        executor.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _finish(args, result, report_dir: Optional[Path] = None) -> int:
    """Print the run result and map it to an exit code."""
    report = RunReport(result, source=str(args.path) if args.path else '')
    if args.json_output:
        print(report.to_json())
    else:
        print(format_summary(result))
    if report_dir:
        for path in report.write(report_dir):
            logger.info(f"Report written: {path}")

    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_FAILED


def apply_main(argv: list) -> int:
    """Handle 'apply' verb."""
    parser = _common_parser('apply')
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        help='Write JSON and markdown run reports to this directory',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    settings = _load_settings(args)
    registry = default_registry()
    resources = load_resources(args.path, registry=registry)
    executor = _make_executor(settings, registry)

    logger.info(f"Applying {len(resources)} resources from {args.path} (state: {settings.state_path})")
    with _cancel_on_interrupt(executor):
        result = executor.apply(resources)
    return _finish(args, result, args.report_dir)


def destroy_main(argv: list) -> int:
    """Handle 'destroy' verb."""
    parser = _common_parser('destroy', path_required=False)
    parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Retry failed destroys with force (skip graceful shutdown)',
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        help='Write JSON and markdown run reports to this directory',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    settings = _load_settings(args)
    registry = default_registry()
    resources = load_resources(args.path, registry=registry) if args.path else []
    executor = _make_executor(settings, registry)

    # Confirmation for destructive operation
    if not args.yes:
        count = len(executor.store.load())
        print(f"\nWARNING: This will destroy {count} resource(s) recorded in {settings.state_path}.")
        print("This action cannot be undone.")
        response = input("Continue? [y/N] ").strip().lower()
        if response != 'y':
            print("Aborted.")
            return EXIT_FAILED

    logger.info(f"Destroying resources recorded in {settings.state_path}")
    with _cancel_on_interrupt(executor):
        result = executor.destroy(resources, force=args.force)
    return _finish(args, result, args.report_dir)


def plan_main(argv: list) -> int:
    """Handle 'plan' verb."""
    parser = _common_parser('plan')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    settings = _load_settings(args)
    registry = default_registry()
    resources = load_resources(args.path, registry=registry)
    executor = _make_executor(settings, registry)
    planned = executor.plan(resources)

    if args.json_output:
        print(json.dumps({'plan': planned}, indent=2))
        return EXIT_OK

    if not planned:
        print("No resources declared and nothing in state.")
        return EXIT_OK
    for item in planned:
        line = f"  {item['action']:<8} {item['id']}"
        if item.get('lookup'):
            line += f" [{', '.join(item['lookup'])}]"
        if item.get('error'):
            line += f" ({item['error']})"
        print(line)
    counts: dict[str, int] = {}
    for item in planned:
        counts[item['action']] = counts.get(item['action'], 0) + 1
    print("Plan: " + ", ".join(f"{n} to {action}" for action, n in sorted(counts.items())))
    return EXIT_FAILED if 'error' in counts else EXIT_OK


def validate_main(argv: list) -> int:
    """Handle 'validate' verb.

    Loads the resource files, checks every type has a provider and the
    dependency graph is acyclic with no dangling edges. Nothing is run.
    """
    parser = argparse.ArgumentParser(
        prog='converge validate',
        description=VERB_COMMANDS['validate'],
    )
    parser.add_argument('path', type=Path, help='Resource file or directory of resource files')
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show the execution levels',
    )
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    registry = default_registry()
    resources = load_resources(args.path, registry=registry)
    registry.check(resources)
    graph = ResourceGraph(resources)

    levels = graph.levels()
    for i, level in enumerate(levels, 1):
        logger.debug(f"Level {i}: {', '.join(n.id for n in level)}")

    count = len(graph)
    print(f"{args.path} is valid ({count} resource{'s' if count != 1 else ''}, "
          f"{len(levels)} level{'s' if len(levels) != 1 else ''})")
    return EXIT_OK


VERB_HANDLERS = {
    "apply": apply_main,
    "destroy": destroy_main,
    "plan": plan_main,
    "validate": validate_main,
}


def main(argv: Optional[list] = None) -> int:
    """CLI entry point: dispatch to verb handlers and map errors to exit codes."""
    argv = sys.argv[1:] if argv is None else list(argv)

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return EXIT_OK
    if argv[0] == '--version':
        print(f"converge {get_version()}")
        return EXIT_OK

    verb = argv[0]
    handler = VERB_HANDLERS.get(verb)
    if handler is None:
        print(f"Error: Unknown command '{verb}'", file=sys.stderr)
        print_usage()
        return EXIT_USAGE

    try:
        return handler(argv[1:])
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except (GraphError, UnknownResourceTypeError) as e:
        print(f"Error: invalid resource graph: {e}", file=sys.stderr)
        return EXIT_USAGE
    except StateIOError as e:
        print(f"Error: state: {e}", file=sys.stderr)
        return EXIT_USAGE
    except EngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return EXIT_CANCELLED


if __name__ == '__main__':
    sys.exit(main())
