"""CLI entrypoint for asmscan."""

from __future__ import annotations

import argparse
import sys

from .config import ConfigError, load_config
from .logging import configure_logging, get_logger
from .presenter import print_table
from .scanner import resolve_root, scan_directory

logger = get_logger("cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asmscan",
        description="List .NET assembly names, versions and public key tokens under a directory.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity, including files that could not be read.",
    )
    parser.add_argument(
        "--exclude-dir",
        action="append",
        default=None,
        dest="exclude_dirs",
        metavar="NAME",
        help="Directory name to skip while walking (repeatable).",
    )
    parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="Root directory to scan (defaults to current directory).",
    )
    parser.add_argument(
        "filter",
        nargs="?",
        default=None,
        help="File name filter; bare names get .dll appended (defaults to *.dll).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for asmscan."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        root = resolve_root(args.path)
        config = load_config(root)
        name_filter = args.filter if args.filter is not None else config.filter
        exclude_dirs = args.exclude_dirs if args.exclude_dirs else config.exclude_dirs
        records = scan_directory(str(root), name_filter, exclude_dirs=exclude_dirs)
    except (FileNotFoundError, NotADirectoryError) as exc:
        parser.exit(1, f"{exc}\n")
    except ConfigError as exc:
        parser.exit(1, f"asmscan: {exc}\n")
    except OSError as exc:
        parser.exit(1, f"asmscan scan failed: {exc}\nRun with --verbose for more details.\n")
    except KeyboardInterrupt:
        parser.exit(130, "Interrupted\n")

    failed = sum(1 for record in records if record.is_error)
    logger.debug(
        "Scanned %d files, %d assemblies, %d skipped",
        len(records),
        len(records) - failed,
        failed,
    )
    print_table(records)


if __name__ == "__main__":
    main(sys.argv[1:])
