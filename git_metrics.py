#!/usr/bin/env python3
"""
git-metrics

Computes a metric for every commit on the first-parent history of a git
repository and charts how it changes over time.

Example:
    git-metrics --metric filetypes --out filetypes.html
    git-metrics -r ../some-repo -m lines --since 2023-01-01 -o lines.png
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from history_walker import WalkOptions
from metric_calculators import (
    METRIC_CALCULATORS,
    ConfigurationError,
    MetricCalculator,
    get_metric_calculator,
)
from metrics_pipeline import calculate_metrics, open_for_metric
from repo_access import GitMetricsError, RepositoryAccessError, find_repo_root
from series_builder import CHART_FORMATS, resolve_format

DEFAULT_OUTPUT = "result.html"


@dataclass
class RunConfig:
    """Everything a run needs, validated before the repository is touched."""

    repo_path: Path
    calculator: MetricCalculator
    output: Path = Path(DEFAULT_OUTPUT)
    chart_format: Optional[str] = None
    max_commits: Optional[int] = None
    since: Optional[datetime] = None
    show_progress: bool = True

    @property
    def walk_options(self) -> WalkOptions:
        return WalkOptions(max_commits=self.max_commits, since=self.since)


def parse_since(value: str) -> datetime:
    """Parses YYYY-MM-DD or ISO-8601; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            raise ConfigurationError(
                f"Invalid date format: {value}. Use YYYY-MM-DD or ISO format"
            ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-metrics",
        description="Chart how a metric evolves over a repository's commit history",
    )
    parser.add_argument(
        "-r",
        "--repo",
        help="Path to repository. Defaults to the repository containing the current working directory",
    )
    parser.add_argument("-m", "--metric", help="Name of metric to calculate")
    parser.add_argument(
        "-o", "--out", default=DEFAULT_OUTPUT, help="File to output result to"
    )
    parser.add_argument(
        "--format",
        choices=CHART_FORMATS,
        help="Chart format. Defaults to the output file's extension, or html",
    )
    parser.add_argument(
        "--max-commits", type=int, help="Stop after this many commits from HEAD"
    )
    parser.add_argument(
        "--since", help="Stop at the first commit older than this date (YYYY-MM-DD or ISO format)"
    )
    parser.add_argument(
        "--list-metrics", action="store_true", help="List available metrics and exit"
    )
    parser.add_argument(
        "--no-progress", action="store_true", help="Do not show a progress bar"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Validates parsed arguments. Raises ConfigurationError on anything unusable."""
    if not args.metric:
        raise ConfigurationError("please specify a metric to calculate")
    calculator = get_metric_calculator(args.metric)

    if args.max_commits is not None and args.max_commits < 1:
        raise ConfigurationError(f"--max-commits must be positive, got {args.max_commits}")
    since = parse_since(args.since) if args.since else None
    try:
        chart_format = resolve_format(args.out, args.format)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if args.repo:
        repo_path = Path(args.repo)
    else:
        try:
            repo_path = find_repo_root()
        except RepositoryAccessError as e:
            raise ConfigurationError(
                f"could not find repo root. Are you in a git repository? {e}"
            ) from e

    return RunConfig(
        repo_path=repo_path,
        calculator=calculator,
        output=Path(args.out),
        chart_format=chart_format,
        max_commits=args.max_commits,
        since=since,
        show_progress=not args.no_progress,
    )


def run(config: RunConfig):
    calculator = config.calculator

    print("Cloning repo...", end="", flush=True)
    with open_for_metric(config.repo_path, calculator) as handle:
        print("Done")

        print("Calculating metrics...", end="", flush=True)
        samples = calculate_metrics(
            handle, calculator, config.walk_options, show_progress=config.show_progress
        )
        print("Done")

        print("Rendering graph...", end="", flush=True)
        calculator.render_graph(samples, config.output, fmt=config.chart_format)
        print("Done")


def describe_error(error: BaseException) -> str:
    """Joins the messages of an exception and everything it was raised from."""
    messages = []
    while error is not None:
        messages.append(str(error))
        error = error.__cause__
    return ": ".join(m for m in messages if m)


def exit_with_error(parser: argparse.ArgumentParser, message: str) -> int:
    print(message, file=sys.stderr)
    parser.print_usage(sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    if args.list_metrics:
        for name in sorted(METRIC_CALCULATORS):
            print(name)
        return 0

    try:
        config = build_config(args)
    except ConfigurationError as e:
        return exit_with_error(parser, str(e))

    try:
        run(config)
    except GitMetricsError as e:
        print()
        return exit_with_error(parser, f"failed to calculate metrics: {describe_error(e)}")
    except (OSError, ValueError) as e:
        print()
        return exit_with_error(parser, f"failed to write result: {describe_error(e)}")

    print(f"Result written to: {config.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
