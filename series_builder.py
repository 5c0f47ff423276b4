# series_builder.py

"""
series_builder.py - Turns per-commit measurement maps into stacked
percentage series and writes them out as a chart.

Samples are expected oldest-first. Every key ever observed gets a series that
spans all commit indices; a key missing from a sample contributes 0 there.
"""

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import pandas as pd
import plotly.graph_objects as go

logger = logging.getLogger(__name__)

HTML_FORMAT = "html"
IMAGE_FORMATS = ("png", "svg", "pdf")
CHART_FORMATS = (HTML_FORMAT,) + IMAGE_FORMATS


@dataclass
class Series:
    """One stacked band of the chart."""

    label: str
    color: Tuple[int, int, int]
    # (commit index, cumulative percentage)
    points: List[Tuple[int, float]] = field(default_factory=list)
    # instantaneous, non-cumulative percentage per commit index
    values: List[float] = field(default_factory=list)

    @property
    def xs(self) -> List[int]:
        return [x for x, _ in self.points]

    @property
    def ys(self) -> List[float]:
        return [y for _, y in self.points]

    def rgba(self, alpha: float = 1.0) -> str:
        r, g, b = self.color
        return f"rgba({r}, {g}, {b}, {alpha})"


# ============================================================================
# SERIES COMPUTATION
# ============================================================================


def measurement_frame(samples: Sequence) -> pd.DataFrame:
    """One row per sample, one column per key ever seen, missing counts as 0."""
    frame = pd.DataFrame(
        [dict(sample.measurements) for sample in samples],
        index=pd.RangeIndex(len(samples), name="commit_index"),
    )
    return frame.fillna(0).astype("int64")


def display_order(samples: Sequence) -> List[str]:
    """Keys by count in the last sample descending, then by name."""
    keys = set()
    for sample in samples:
        keys.update(sample.measurements)
    if not samples:
        return []
    last = samples[-1].measurements
    return sorted(keys, key=lambda key: (-last.get(key, 0), key))


def empty_sample_indices(samples: Sequence) -> List[int]:
    """Commit indices whose measurements add up to zero."""
    return [i for i, sample in enumerate(samples) if sum(sample.measurements.values()) == 0]


def percentage_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Share of each key in its row's total, in percent. Zero-total rows stay 0."""
    totals = frame.sum(axis=1)
    shares = frame.div(totals.where(totals > 0), axis=0) * 100.0
    return shares.fillna(0.0)


def random_color(rng: Optional[random.Random] = None) -> Tuple[int, int, int]:
    rng = rng or random
    return (rng.randint(0, 255), rng.randint(0, 255), rng.randint(0, 255))


def build_series(samples: Sequence, rng: Optional[random.Random] = None) -> List[Series]:
    """
    Builds one stacked-area series per measurement key.

    At each commit index the Kth series (in display order) sits at the sum of
    the percentages of the first K keys, so the last series reaches 100 for
    every sample that measured anything.
    """
    keys = display_order(samples)
    logger.debug(f"Series order: {keys}")
    if not keys:
        return []

    frame = measurement_frame(samples)[keys]
    shares = percentage_frame(frame)
    cumulative = shares.cumsum(axis=1)

    series = []
    for key in keys:
        series.append(
            Series(
                label=key,
                color=random_color(rng),
                points=[(int(i), float(y)) for i, y in cumulative[key].items()],
                values=[float(v) for v in shares[key]],
            )
        )
    return series


# ============================================================================
# CHART OUTPUT
# ============================================================================


def resolve_format(output: Union[str, Path, IO], fmt: Optional[str] = None) -> str:
    """Explicit format wins, then the output file's suffix, then html."""
    if fmt is None:
        suffix = ""
        if isinstance(output, (str, Path)):
            suffix = Path(output).suffix.lstrip(".").lower()
        fmt = suffix or HTML_FORMAT
    fmt = fmt.lower()
    if fmt not in CHART_FORMATS:
        raise ValueError(
            f"Unsupported chart format '{fmt}'. Choose one of: {', '.join(CHART_FORMATS)}"
        )
    return fmt


def _write_html_chart(series, output, title, hover_labels, y_title):
    fig = go.Figure()
    for position, s in enumerate(series):
        fig.add_trace(
            go.Scatter(
                x=s.xs,
                y=s.ys,
                # A lone point has no line to draw
                mode="lines+markers" if len(s.xs) == 1 else "lines",
                name=s.label,
                line=dict(color=s.rgba(), width=1.5),
                fill="tozeroy" if position == 0 else "tonexty",
                fillcolor=s.rgba(0.6),
                customdata=[[v, label] for v, label in zip(s.values, hover_labels)],
                hovertemplate=(
                    "%{customdata[1]}<br>"
                    f"{s.label}: " + "%{customdata[0]:.1f}% (stacked %{y:.1f}%)"
                    "<extra></extra>"
                ),
            )
        )

    fig.update_layout(
        title=title,
        xaxis=dict(type="linear", title="Commit", showgrid=True),
        yaxis=dict(type="linear", title=y_title, showgrid=True),
        hovermode="closest",
        template="plotly_white",
    )
    # plotly.js is inlined so the page works offline
    fig.write_html(output, include_plotlyjs=True, full_html=True)


def _write_image_chart(series, output, title, y_title, fmt):
    fig, ax = plt.subplots(figsize=(12, 6))
    previous = None
    for s in series:
        lower = previous if previous is not None else [0.0] * len(s.ys)
        color = tuple(c / 255 for c in s.color)
        ax.fill_between(s.xs, lower, s.ys, color=color, alpha=0.8, label=s.label)
        if len(s.xs) == 1:
            ax.scatter(s.xs, s.ys, color=color)
        previous = s.ys

    ax.set_title(title)
    ax.set_xlabel("Commit")
    ax.set_ylabel(y_title)
    ax.grid(True, which="both", linestyle="--", linewidth=0.5)
    if series:
        ax.legend(loc="center left", bbox_to_anchor=(1.0, 0.5))
    fig.savefig(output, format=fmt, bbox_inches="tight")
    plt.close(fig)


def save_chart(
    series: List[Series],
    output: Union[str, Path, IO],
    title: str = "",
    hover_labels: Optional[List[str]] = None,
    fmt: Optional[str] = None,
    y_title: str = "Percentage",
):
    """
    Writes the stacked series to `output` (a path or a writable file object).

    html gives a self-contained interactive document; png, svg and pdf give a
    static image.
    """
    fmt = resolve_format(output, fmt)
    if not series:
        logger.warning("No measurements to plot, writing an empty chart")

    n_points = len(series[0].points) if series else 0
    if hover_labels is None or len(hover_labels) != n_points:
        hover_labels = [f"#{i}" for i in range(n_points)]

    if fmt == HTML_FORMAT:
        _write_html_chart(series, output, title, hover_labels, y_title)
    else:
        _write_image_chart(series, output, title, y_title, fmt)
    logger.info(f"Saved {fmt} chart with {len(series)} series")
