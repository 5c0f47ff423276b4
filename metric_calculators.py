# metric_calculators.py

"""
Metric calculators: each turns one materialized working tree into a mapping
from measurement key to count, and knows how to chart a history of those
mappings.

New metrics are added to METRIC_CALCULATORS; the command line resolves the
requested name against that registry once, at startup.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import IO, Dict, List, Optional, Type, Union

from repo_access import GitMetricsError, WorkingTree
from series_builder import build_series, empty_sample_indices, save_chart

logger = logging.getLogger(__name__)


class ConfigurationError(GitMetricsError):
    """The run was configured with something that cannot work."""


class UnknownMetricError(ConfigurationError):
    """No calculator is registered under the requested name."""


# ============================================================================
# HELPERS
# ============================================================================


def file_extension(name: str) -> str:
    """
    Returns everything from the last dot in `name`, or "" when there is none.

    Dotfiles keep their full name (".gitignore") and only the final suffix of
    multi-dot names is used ("a.tar.gz" -> ".gz").
    """
    index = name.rfind(".")
    if index == -1:
        return ""
    return name[index:]


EXT_TO_LANGUAGE = {
    ".py": "Python",
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".h": "C/C++",
    ".hpp": "C++",
    ".cs": "C#",
    ".php": "PHP",
    ".rb": "Ruby",
    ".go": "Go",
    ".rs": "Rust",
    ".kt": "Kotlin",
    ".swift": "Swift",
    ".scala": "Scala",
    ".r": "R",
    ".m": "Objective-C",
    ".sh": "Shell",
    ".bash": "Bash",
    ".ps1": "PowerShell",
    ".bat": "Batch",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sass": "Sass",
    ".xml": "XML",
    ".json": "JSON",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".sql": "SQL",
    ".md": "Markdown",
    ".tex": "LaTeX",
    ".vim": "Vim",
    ".lua": "Lua",
    ".pl": "Perl",
    ".dart": "Dart",
    ".elm": "Elm",
    ".ex": "Elixir",
    ".clj": "Clojure",
    ".hs": "Haskell",
    ".ml": "OCaml",
    ".f90": "Fortran",
}

BINARY_EXTENSIONS = {
    ".exe", ".dll", ".so", ".dylib", ".a", ".o", ".obj", ".lib",
    ".jar", ".war", ".ear", ".class", ".pyc", ".pyo", ".pyd",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp",
    ".mp3", ".wav", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".mkv",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".bz2", ".rar", ".7z", ".deb", ".rpm",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
}


def detect_language(name: str) -> str:
    """Maps a file name to a language name, "Other" when unrecognized."""
    lowered = name.lower()
    if "dockerfile" in lowered:
        return "Dockerfile"
    if "makefile" in lowered:
        return "Makefile"
    return EXT_TO_LANGUAGE.get(file_extension(lowered), "Other")


def count_lines(content: bytes) -> int:
    if not content:
        return 0
    lines = content.count(b"\n")
    if not content.endswith(b"\n"):
        lines += 1
    return lines


# ============================================================================
# CALCULATOR INTERFACE
# ============================================================================


class MetricCalculator(ABC):
    """
    Base class for all metrics.

    `calculate` must be a pure function of the tree it is given: it may not
    depend on walk order or on earlier calls.
    """

    name: str = ""
    title: str = ""
    y_title: str = "Percentage of files"

    @property
    def is_read_only(self) -> bool:
        """Whether `calculate` can run against a tree that cannot be written to."""
        return True

    @abstractmethod
    def calculate(self, tree: WorkingTree) -> Dict[str, int]:
        pass

    def hover_label(self, index: int, sample) -> str:
        commit = sample.commit
        summary = commit.message.strip().split("\n")[0][:60]
        return f"#{index} {commit.hexsha[:8]} {summary}"

    def render_graph(self, samples: List, output: Union[str, IO], fmt: Optional[str] = None):
        """Writes the stacked-percentage chart for an oldest-first list of samples."""
        empty = empty_sample_indices(samples)
        if empty:
            hashes = ", ".join(samples[i].commit.hexsha[:8] for i in empty)
            logger.warning(
                f"{len(empty)} commit(s) had nothing to measure and are plotted as 0%: {hashes}"
            )

        series = build_series(samples)
        save_chart(
            series,
            output,
            title=self.title,
            hover_labels=[self.hover_label(i, s) for i, s in enumerate(samples)],
            fmt=fmt,
            y_title=self.y_title,
        )


class TreeWalkingCalculator(MetricCalculator):
    """
    Counts something per file by walking the tree recursively from the root.

    Each directory's counts are merged into its parent's on the way back up.
    """

    def calculate(self, tree: WorkingTree) -> Dict[str, int]:
        return dict(self._count_directory(tree, ""))

    def _count_directory(self, tree: WorkingTree, path: str) -> Counter:
        result = Counter()
        for entry in tree.list_directory(path):
            entry_path = f"{path}/{entry.name}" if path else entry.name
            if entry.is_dir:
                result.update(self._count_directory(tree, entry_path))
            else:
                self.count_file(tree, entry_path, entry.name, result)
        return result

    @abstractmethod
    def count_file(self, tree: WorkingTree, path: str, name: str, counts: Counter):
        pass


# ============================================================================
# METRICS
# ============================================================================


class Filetypes(TreeWalkingCalculator):
    """Number of files per extension. Files without an extension are ignored."""

    name = "filetypes"
    title = "By filetype"

    def count_file(self, tree, path, name, counts):
        ext = file_extension(name)
        if ext:
            counts[ext] += 1


class Languages(TreeWalkingCalculator):
    """Number of files per programming language."""

    name = "languages"
    title = "By language"

    def count_file(self, tree, path, name, counts):
        counts[detect_language(name)] += 1


class Lines(TreeWalkingCalculator):
    """Lines of text per extension; binary files are skipped."""

    name = "lines"
    title = "Lines by filetype"
    y_title = "Percentage of lines"

    def count_file(self, tree, path, name, counts):
        ext = file_extension(name)
        if not ext or ext.lower() in BINARY_EXTENSIONS:
            return
        content = tree.read_file(path)
        if b"\x00" in content:
            return
        counts[ext] += count_lines(content)


METRIC_CALCULATORS: Dict[str, Type[MetricCalculator]] = {
    Filetypes.name: Filetypes,
    Languages.name: Languages,
    Lines.name: Lines,
}


def get_metric_calculator(name: str) -> MetricCalculator:
    try:
        calculator_class = METRIC_CALCULATORS[name]
    except KeyError:
        raise UnknownMetricError(f"unknown metric: {name}") from None
    return calculator_class()
