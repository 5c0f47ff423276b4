# repo_access.py

"""
repo_access.py - Repository access layer for the metric history walk.

Two ways of opening a repository are supported:
1. In-memory: a read-only view served straight from the git object database.
   Nothing is checked out and no files are written anywhere.
2. Temp clone: a disposable clone in a temporary directory whose working files
   are overwritten by a real checkout at every step. Used by metrics that need
   to write into the tree.

Either way the caller gets a RepositoryHandle owning exactly one WorkingTree,
which is re-pointed in place for each commit and never copied.
"""

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, NamedTuple, Optional, Union

from git import Commit, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject

logger = logging.getLogger(__name__)

GIT_DIR_NAME = ".git"


# ============================================================================
# ERRORS
# ============================================================================


class GitMetricsError(Exception):
    """Base class for every error raised by git-metrics."""


class RepositoryAccessError(GitMetricsError):
    """A clone, checkout, commit lookup or tree listing failed."""

    def __init__(
        self, message: str, commit_hash: Optional[str] = None, path: Optional[str] = None
    ):
        details = []
        if commit_hash:
            details.append(f"commit {commit_hash}")
        if path is not None:
            details.append(f"path '{path}'")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)
        self.commit_hash = commit_hash
        self.path = path


# ============================================================================
# WORKING TREES
# ============================================================================


class DirEntry(NamedTuple):
    """A single directory listing entry."""

    name: str
    is_dir: bool


class WorkingTree(ABC):
    """
    The file-and-directory view of one commit.

    Paths are POSIX-style and relative to the repository root; the root itself
    is the empty string.
    """

    def __init__(self):
        self.commit: Optional[Commit] = None

    @property
    @abstractmethod
    def read_only(self) -> bool:
        pass

    @abstractmethod
    def materialize(self, commit: Commit):
        """Overwrite the tree so it reflects `commit`."""
        pass

    @abstractmethod
    def list_directory(self, path: str = "") -> List[DirEntry]:
        pass

    @abstractmethod
    def read_file(self, path: str) -> bytes:
        pass

    def _require_commit(self) -> Commit:
        if self.commit is None:
            raise RepositoryAccessError("working tree has not been materialized yet")
        return self.commit


class ObjectTree(WorkingTree):
    """Read-only tree backed by the commit's git tree object."""

    def __init__(self, repo: Repo):
        super().__init__()
        self.repo = repo
        self._tree = None

    @property
    def read_only(self) -> bool:
        return True

    def materialize(self, commit: Commit):
        try:
            self._tree = commit.tree
        except (ValueError, BadObject) as e:
            raise RepositoryAccessError(
                "failed to read commit tree", commit_hash=commit.hexsha
            ) from e
        self.commit = commit

    def _lookup(self, path: str):
        commit = self._require_commit()
        if not path:
            return self._tree
        try:
            return self._tree / path
        except KeyError as e:
            raise RepositoryAccessError(
                "no such entry in tree", commit_hash=commit.hexsha, path=path
            ) from e

    def list_directory(self, path: str = "") -> List[DirEntry]:
        node = self._lookup(path)
        if node.type != "tree":
            raise RepositoryAccessError(
                "not a directory", commit_hash=self.commit.hexsha, path=path
            )
        # Submodule entries are neither trees nor blobs and are left out
        entries = [DirEntry(tree.name, True) for tree in node.trees]
        entries.extend(DirEntry(blob.name, False) for blob in node.blobs)
        return entries

    def read_file(self, path: str) -> bytes:
        node = self._lookup(path)
        if node.type != "blob":
            raise RepositoryAccessError(
                "not a file", commit_hash=self.commit.hexsha, path=path
            )
        return node.data_stream.read()


class CheckoutTree(WorkingTree):
    """Writable tree: the working directory of a disposable clone."""

    def __init__(self, repo: Repo):
        super().__init__()
        self.repo = repo
        self.root = Path(repo.working_tree_dir)

    @property
    def read_only(self) -> bool:
        return False

    def materialize(self, commit: Commit):
        logger.debug(f"Checking out {commit.hexsha[:8]} into {self.root}")
        try:
            self.repo.git.checkout("--force", "--detach", commit.hexsha)
            # Drop anything a previous step wrote into the tree
            self.repo.git.clean("-ffdx")
        except GitCommandError as e:
            raise RepositoryAccessError(
                "failed to check out working tree", commit_hash=commit.hexsha
            ) from e
        self.commit = commit

    def list_directory(self, path: str = "") -> List[DirEntry]:
        commit = self._require_commit()
        directory = self.root / path if path else self.root
        try:
            with os.scandir(directory) as it:
                return [
                    DirEntry(entry.name, entry.is_dir(follow_symlinks=False))
                    for entry in it
                    if path or entry.name != GIT_DIR_NAME
                ]
        except OSError as e:
            raise RepositoryAccessError(
                "failed to list directory", commit_hash=commit.hexsha, path=path
            ) from e

    def read_file(self, path: str) -> bytes:
        commit = self._require_commit()
        try:
            return (self.root / path).read_bytes()
        except OSError as e:
            raise RepositoryAccessError(
                "failed to read file", commit_hash=commit.hexsha, path=path
            ) from e


# ============================================================================
# REPOSITORY HANDLE
# ============================================================================


class RepositoryHandle:
    """Owns a Repo and the single WorkingTree materialized from it."""

    def __init__(self, repo: Repo, working_tree: WorkingTree):
        self.repo = repo
        self.working_tree = working_tree

    @property
    def read_only(self) -> bool:
        return self.working_tree.read_only

    def resolve_head(self) -> Commit:
        try:
            return self.repo.head.commit
        except (ValueError, GitCommandError) as e:
            raise RepositoryAccessError(
                f"failed to resolve HEAD of {self.repo.git_dir}"
            ) from e

    def fetch_commit(self, hexsha: str) -> Commit:
        try:
            commit = self.repo.commit(hexsha)
            # Commit objects are lazy; reading a field forces the lookup
            commit.committed_date
        except (BadName, BadObject, ValueError, GitCommandError) as e:
            raise RepositoryAccessError(
                "failed to fetch commit object", commit_hash=hexsha
            ) from e
        return commit

    def checkout(self, commit: Commit) -> WorkingTree:
        """Materialize `commit` into the shared working tree and return it."""
        self.working_tree.materialize(commit)
        return self.working_tree

    def list_directory(self, tree: WorkingTree, path: str = "") -> List[DirEntry]:
        return tree.list_directory(path)

    def close(self):
        self.repo.close()


def open_in_memory(repo_path: Union[str, Path]) -> RepositoryHandle:
    """Opens a read-only view of the repository's object database."""
    try:
        repo = Repo(repo_path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise RepositoryAccessError(
            f"could not open repository at {repo_path}. Is it a valid git repo?"
        ) from e
    return RepositoryHandle(repo, ObjectTree(repo))


def clone_to_temp(repo_path: Union[str, Path], temp_dir: Union[str, Path]) -> RepositoryHandle:
    """Clones the repository into `temp_dir` so its files can be written to."""
    try:
        repo = Repo.clone_from(str(repo_path), str(temp_dir))
    except GitCommandError as e:
        raise RepositoryAccessError(
            f"failed to clone {repo_path} into {temp_dir}"
        ) from e
    return RepositoryHandle(repo, CheckoutTree(repo))


def _remove_temp_dir(temp_dir: str):
    try:
        shutil.rmtree(temp_dir)
    except OSError as e:
        logger.error(f"Failed to remove temporary directory {temp_dir}: {e}")


@contextmanager
def open_repository(
    repo_path: Union[str, Path], read_only: bool = True
) -> Iterator[RepositoryHandle]:
    """
    Opens the repository in the mode a metric asks for.

    A writable open creates a temporary clone which is removed on every exit
    path. A failed removal is logged and never replaces the outcome of the
    body.
    """
    if read_only:
        handle = open_in_memory(repo_path)
        try:
            yield handle
        finally:
            handle.close()
        return

    temp_dir = tempfile.mkdtemp(prefix="git-metrics-")
    logger.debug(f"Created temporary directory {temp_dir}")
    try:
        handle = clone_to_temp(repo_path, temp_dir)
        try:
            yield handle
        finally:
            handle.close()
    finally:
        _remove_temp_dir(temp_dir)


# ============================================================================
# REPOSITORY DISCOVERY
# ============================================================================


def find_repo_root(start: Optional[Union[str, Path]] = None) -> Path:
    """Walks up from `start` (default: cwd) until a directory holding .git is found."""
    current = Path(start or os.getcwd()).resolve()
    while True:
        candidate = current / GIT_DIR_NAME
        logger.debug(f"Looking in {candidate}")
        if candidate.exists():
            return current
        parent = current.parent
        if parent == current:
            raise RepositoryAccessError(
                f"failed to find {GIT_DIR_NAME} in any parent directory"
            )
        current = parent
