"""
Integration tests that run the whole flow: walk a real repository, calculate
a metric for each commit, build the series and write the chart.
"""
import logging
from pathlib import Path

import pytest

from git_metrics import build_config, build_parser, main, parse_since
from metric_calculators import ConfigurationError, Filetypes, UnknownMetricError
from metrics_pipeline import run_metrics
from series_builder import build_series


class TestEndToEnd:
    def test_three_commit_go_repository(self, go_repo, tmp_path):
        samples = run_metrics(go_repo.working_dir, Filetypes())
        assert len(samples) == 3

        series = build_series(samples)
        assert [s.label for s in series] == [".go", ".md"]

        go, md = series
        assert go.values == pytest.approx([50.0, 200 / 3, 75.0])
        assert md.values == pytest.approx([50.0, 100 / 3, 25.0])
        assert md.ys == pytest.approx([100.0, 100.0, 100.0])

        output = tmp_path / "result.html"
        Filetypes().render_graph(samples, output)
        assert "By filetype" in output.read_text(encoding="utf-8")

    def test_merge_history_ignores_side_branch_commits(self, merge_repo):
        samples = run_metrics(merge_repo.working_dir, Filetypes())

        assert [s.commit.message.strip() for s in samples] == [
            "Base",
            "Add core",
            "Merge feature",
        ]
        # The merge brings the side branch's file in, its own commit is never sampled
        assert samples[-1].measurements == {".py": 1, ".go": 1, ".rs": 1}
        assert all(s.measurements != {".py": 1, ".rs": 1} for s in samples)


class TestCommandLine:
    def test_success(self, go_repo, tmp_path, capsys):
        output = tmp_path / "out.html"
        code = main(
            ["-r", go_repo.working_dir, "-m", "filetypes", "-o", str(output), "--no-progress"]
        )

        assert code == 0
        assert output.exists()
        out = capsys.readouterr().out
        assert "Cloning repo...Done" in out
        assert "Calculating metrics...Done" in out
        assert "Rendering graph...Done" in out

    def test_png_output_with_limits(self, go_repo, tmp_path):
        output = tmp_path / "lines.png"
        code = main(
            [
                "--repo", go_repo.working_dir,
                "--metric", "lines",
                "--out", str(output),
                "--max-commits", "2",
                "--since", "2021-01-01",
                "--no-progress",
            ]
        )
        assert code == 0
        assert output.read_bytes().startswith(b"\x89PNG")

    def test_missing_metric(self, capsys):
        assert main([]) == 1
        err = capsys.readouterr().err
        assert "please specify a metric to calculate" in err
        assert "usage:" in err

    def test_unknown_metric(self, go_repo, capsys):
        assert main(["-r", go_repo.working_dir, "-m", "nope"]) == 1
        err = capsys.readouterr().err
        assert "unknown metric: nope" in err
        assert "usage:" in err

    def test_not_a_repository(self, tmp_path, capsys):
        code = main(["-r", str(tmp_path), "-m", "filetypes", "-o", str(tmp_path / "x.html")])
        assert code == 1
        assert "could not open repository" in capsys.readouterr().err
        assert not (tmp_path / "x.html").exists()

    def test_unsupported_output_suffix_rejected_before_opening(self, go_repo, tmp_path, capsys):
        output = tmp_path / "result.txt"
        code = main(
            ["-r", go_repo.working_dir, "-m", "filetypes", "-o", str(output), "--no-progress"]
        )

        assert code == 1
        captured = capsys.readouterr()
        assert "Cloning repo" not in captured.out
        assert "Unsupported chart format 'txt'" in captured.err
        assert "usage:" in captured.err
        assert not output.exists()

    def test_opens_repository_in_calculator_mode(self, go_repo, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="metrics_pipeline")
        code = main(
            [
                "-r", go_repo.working_dir,
                "-m", "filetypes",
                "-o", str(tmp_path / "r.html"),
                "--no-progress",
            ]
        )

        assert code == 0
        assert "in memory for the filetypes metric" in caplog.text

    def test_list_metrics(self, capsys):
        assert main(["--list-metrics"]) == 0
        assert capsys.readouterr().out.split() == ["filetypes", "languages", "lines"]


class TestBuildConfig:
    def parse(self, *argv):
        return build_parser().parse_args(list(argv))

    def test_defaults_to_enclosing_repository(self, go_repo, monkeypatch):
        monkeypatch.chdir(Path(go_repo.working_dir) / "cmd")
        config = build_config(self.parse("-m", "filetypes"))

        assert config.repo_path == Path(go_repo.working_dir).resolve()
        assert config.output == Path("result.html")
        assert isinstance(config.calculator, Filetypes)
        assert config.walk_options.max_commits is None

    def test_unresolved_repo_root(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError, match="could not find repo root"):
            build_config(self.parse("-m", "filetypes"))

    def test_unknown_metric(self):
        with pytest.raises(UnknownMetricError):
            build_config(self.parse("-m", "nope", "-r", "."))

    def test_chart_format_resolved_from_output(self):
        config = build_config(self.parse("-m", "filetypes", "-r", ".", "-o", "chart.SVG"))
        assert config.chart_format == "svg"

    def test_unsupported_output_suffix(self):
        with pytest.raises(ConfigurationError, match="Unsupported chart format"):
            build_config(self.parse("-m", "filetypes", "-r", ".", "-o", "result.txt"))

    def test_non_positive_max_commits(self):
        with pytest.raises(ConfigurationError, match="--max-commits"):
            build_config(self.parse("-m", "filetypes", "-r", ".", "--max-commits", "0"))

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2021-01-02", "2021-01-02T00:00:00+00:00"),
            ("2021-01-02T10:30:00Z", "2021-01-02T10:30:00+00:00"),
            ("2021-01-02T10:30:00+02:00", "2021-01-02T10:30:00+02:00"),
        ],
    )
    def test_parse_since(self, value, expected):
        assert parse_since(value).isoformat() == expected

    def test_parse_since_invalid(self):
        with pytest.raises(ConfigurationError, match="Invalid date format"):
            parse_since("last tuesday")
