from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .merge import JoinConfig, join_repositories
from .reporting import summarize_cli, write_report
from .workspace import RepoWeaverError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-weaver",
        description="Join git repositories into one repository, keeping every history.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    join_parser = subparsers.add_parser("join", help="Join the repositories below a directory.")
    _add_join_arguments(join_parser)

    return parser


def _add_join_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "root",
        type=Path,
        help="Root directory below which to join git repositories.",
    )
    parser.add_argument(
        "--suffix",
        default="",
        help=(
            "Suffix appended to each repository's directory name in the joined tree. "
            "Pass values starting with a dash as --suffix=-src."
        ),
    )
    parser.add_argument(
        "--branch",
        help="Branch to use for every repository (overrides the manifest and defaults).",
    )
    parser.add_argument(
        "--target",
        type=Path,
        help="Path of the joined repository (default: <root>_joined next to the root).",
    )
    parser.add_argument(
        "--target-branch",
        default="main",
        help="Branch created in the joined repository (default: main).",
    )
    parser.add_argument(
        "--on-unresolved",
        choices=["abort", "skip"],
        default="abort",
        help="What to do with repositories whose branch cannot be resolved.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of repositories rewritten in parallel.",
    )
    parser.add_argument(
        "--identity",
        help="'Name <email>' recorded on the final merge commit.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve repositories and branches without writing anything.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Move the target branch even if it already exists in the target repository.",
    )
    parser.add_argument(
        "--no-checkout",
        dest="checkout",
        action="store_false",
        help="Leave the joined repository's working tree empty.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Write a JSON (.json) or Markdown report of the run to this path.",
    )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def run(args: argparse.Namespace) -> int:
    configure_logging(args.verbose)
    logging.debug("Arguments: %s", args)

    if args.command == "join":
        _run_join_flow(args)
        return 0
    raise RepoWeaverError(f"Unknown command: {args.command}")


def config_from_args(args: argparse.Namespace) -> JoinConfig:
    if args.workers < 1:
        raise RepoWeaverError("--workers must be at least 1")
    return JoinConfig(
        root=args.root,
        suffix=args.suffix,
        branch=args.branch,
        target=args.target,
        target_branch=args.target_branch,
        on_unresolved=args.on_unresolved,
        workers=args.workers,
        identity=args.identity,
        dry_run=args.dry_run,
        force=args.force,
        checkout=args.checkout,
        report=args.report.expanduser() if args.report else None,
    )


def _run_join_flow(args: argparse.Namespace) -> None:
    config = config_from_args(args)
    result = join_repositories(config)
    logging.info("\n%s", summarize_cli(result))
    if config.report:
        write_report(config.report, result)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return run(args)
    except RepoWeaverError as exc:
        logging.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        logging.error("Interrupted")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
