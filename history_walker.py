# history_walker.py

"""
Walks a repository's history from HEAD back to the root commit, following the
first parent only, and hands every commit's materialized tree to an observer.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from git import Commit

from repo_access import GitMetricsError, RepositoryHandle, WorkingTree

logger = logging.getLogger(__name__)

HistoryObserver = Callable[[Commit, WorkingTree], None]


class HistoryWalkError(GitMetricsError):
    """The observer failed on a specific commit."""

    def __init__(self, message: str, commit_hash: str):
        super().__init__(f"{message} (commit {commit_hash})")
        self.commit_hash = commit_hash


@dataclass
class WalkOptions:
    """Optional bounds on how far back the walk goes."""

    max_commits: Optional[int] = None
    # Commits strictly older than this are not visited
    since: Optional[datetime] = None

    def __post_init__(self):
        if self.max_commits is not None and self.max_commits < 1:
            raise ValueError(f"max_commits must be positive, got {self.max_commits}")
        if self.since is not None and self.since.tzinfo is None:
            raise ValueError("since must be a timezone-aware datetime")

    def should_stop(self, commit: Commit, visited: int) -> bool:
        if self.max_commits is not None and visited >= self.max_commits:
            logger.info(f"Reached commit limit of {self.max_commits}")
            return True
        if self.since is not None and commit.committed_datetime < self.since:
            logger.info(
                f"Commit {commit.hexsha[:8]} is older than {self.since.isoformat()}, stopping"
            )
            return True
        return False


def walk_repo_history(
    handle: RepositoryHandle,
    observer: HistoryObserver,
    options: Optional[WalkOptions] = None,
) -> int:
    """
    Visits HEAD and its first-parent ancestors, newest first.

    The working tree is overwritten in place for every commit and the observer
    must be done with it before the walk moves on. Parents introduced by merges
    are never visited. Returns the number of commits visited.
    """
    options = options or WalkOptions()
    commit = handle.resolve_head()
    visited = 0

    while True:
        if options.should_stop(commit, visited):
            break

        tree = handle.checkout(commit)
        try:
            observer(commit, tree)
        except Exception as e:
            raise HistoryWalkError("failed running observer", commit.hexsha) from e
        visited += 1

        if not commit.parents:
            logger.debug(f"Reached root commit {commit.hexsha[:8]}")
            break

        # First parent is this branch, any others come from merged branches
        commit = handle.fetch_commit(commit.parents[0].hexsha)

    logger.info(f"Walked {visited} commits")
    return visited
