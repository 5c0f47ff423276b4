# metrics_pipeline.py

"""Runs a metric calculator over every commit the history walker visits."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from git import Commit
from tqdm import tqdm

from history_walker import WalkOptions, walk_repo_history
from metric_calculators import MetricCalculator
from repo_access import GitMetricsError, RepositoryHandle, WorkingTree, open_repository

logger = logging.getLogger(__name__)


class MetricCalculationError(GitMetricsError):
    """A calculator failed on a specific commit's tree."""

    def __init__(self, message: str, commit_hash: str):
        super().__init__(f"{message} (commit {commit_hash})")
        self.commit_hash = commit_hash


@dataclass(frozen=True)
class Sample:
    commit: Commit
    measurements: Dict[str, int]


def calculate_metrics(
    handle: RepositoryHandle,
    calculator: MetricCalculator,
    options: Optional[WalkOptions] = None,
    show_progress: bool = False,
) -> List[Sample]:
    """
    Collects one Sample per visited commit, returned oldest first.

    Any calculator failure aborts the whole run; no partial list is returned.
    """
    samples: List[Sample] = []
    total = options.max_commits if options else None

    with tqdm(desc="Commits", unit="commit", total=total, disable=not show_progress) as progress:

        def observe(commit: Commit, tree: WorkingTree):
            try:
                measurements = calculator.calculate(tree)
            except Exception as e:
                raise MetricCalculationError(
                    f"failed to calculate {calculator.name} metric", commit.hexsha
                ) from e
            samples.append(Sample(commit=commit, measurements=measurements))
            progress.update(1)

        walk_repo_history(handle, observe, options)

    # The walk runs head to root
    samples.reverse()
    return samples


@contextmanager
def open_for_metric(
    repo_path: Union[str, Path], calculator: MetricCalculator
) -> Iterator[RepositoryHandle]:
    """Opens the repository in the mode the calculator needs."""
    mode = "in memory" if calculator.is_read_only else "into a temporary clone"
    logger.info(f"Opening {repo_path} {mode} for the {calculator.name} metric")
    with open_repository(repo_path, read_only=calculator.is_read_only) as handle:
        yield handle


def run_metrics(
    repo_path: Union[str, Path],
    calculator: MetricCalculator,
    options: Optional[WalkOptions] = None,
    show_progress: bool = False,
) -> List[Sample]:
    """Opens the repository for the calculator and collects samples."""
    with open_for_metric(repo_path, calculator) as handle:
        return calculate_metrics(handle, calculator, options, show_progress)
