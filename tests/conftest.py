"""
Pytest fixtures for the entire test suite.

This file defines:
1. Session-scoped fixtures to generate test repositories once.
2. Function-scoped fixtures to provide Repo objects and repository paths.
3. An in-memory working tree and sample helpers for pure unit tests.
"""
import matplotlib

matplotlib.use("Agg")

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from git import Repo

from metrics_pipeline import Sample
from repo_access import DirEntry, RepositoryAccessError, WorkingTree
from tests.fixtures.create_test_repos import (
    create_empty_start_repo,
    create_go_repo,
    create_merge_repo,
    create_single_commit_repo,
)


@pytest.fixture(scope="session")
def test_repos_dir(tmp_path_factory):
    """
    Creates all test repositories once per test session in a temporary directory.
    """
    repos_dir = tmp_path_factory.mktemp("git_repos")

    repo_paths = {
        "go": repos_dir / "go",
        "single": repos_dir / "single",
        "merge": repos_dir / "merge",
        "empty_start": repos_dir / "empty_start",
    }

    create_go_repo(repo_paths["go"])
    create_single_commit_repo(repo_paths["single"])
    create_merge_repo(repo_paths["merge"])
    create_empty_start_repo(repo_paths["empty_start"])

    return repo_paths


@pytest.fixture
def go_repo(test_repos_dir) -> Repo:
    """Three linear commits adding .go files, plus a README.md in the first."""
    return Repo(test_repos_dir["go"])


@pytest.fixture
def single_commit_repo(test_repos_dir) -> Repo:
    return Repo(test_repos_dir["single"])


@pytest.fixture
def merge_repo(test_repos_dir) -> Repo:
    """HEAD is a merge commit with parents [main line, feature branch]."""
    return Repo(test_repos_dir["merge"])


@pytest.fixture
def empty_start_repo(test_repos_dir) -> Repo:
    return Repo(test_repos_dir["empty_start"])


@pytest.fixture
def empty_repo(tmp_path) -> Repo:
    """Provides an empty, newly initialized repository."""
    return Repo.init(tmp_path)


class DictTree(WorkingTree):
    """Working tree built from a {path: content} dict, for calculator tests."""

    def __init__(self, files):
        super().__init__()
        self.files = {path: content.encode() if isinstance(content, str) else content
                      for path, content in files.items()}
        self.commit = Mock(hexsha="f" * 40)

    @property
    def read_only(self):
        return True

    def materialize(self, commit):
        self.commit = commit

    def list_directory(self, path=""):
        prefix = f"{path}/" if path else ""
        entries = {}
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            head, _, rest = file_path[len(prefix):].partition("/")
            entries[head] = entries.get(head, False) or bool(rest)
        return [DirEntry(name, is_dir) for name, is_dir in sorted(entries.items())]

    def read_file(self, path):
        try:
            return self.files[path]
        except KeyError:
            raise RepositoryAccessError("no such file", path=path) from None


@pytest.fixture
def make_tree():
    """Factory for in-memory working trees."""
    return DictTree


def make_commit(hexsha: str, message: str = "commit", day: int = 1):
    return Mock(
        hexsha=hexsha,
        message=message,
        committed_datetime=datetime(2021, 1, day, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_samples():
    """Factory turning a list of measurement dicts into oldest-first Samples."""

    def _make(measurements_list):
        return [
            Sample(commit=make_commit(f"{i:040x}", f"commit {i}", day=i + 1), measurements=m)
            for i, m in enumerate(measurements_list)
        ]

    return _make
