"""
End-to-end integration tests: overdispersion → Wald → posterior in one run directory.

Runs each phase's entry point against a temporary results tree (cwd is moved
to tmp_path so the default ``results/`` root lands there). The posterior phase
gets the conftest FakeSampler instead of nutpie, so no MCMC runs here.

Run: uv run pytest tests/test_integration_pipeline.py -v
"""

import json
import sys
from pathlib import Path

import polars as pl
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis import overdispersion, posterior, wald
from analysis.run_context import generate_run_id, resolve_upstream_dir
from binomlab.scenario import SCENARIOS

RUN_ID = "overdispersed-261019"


def _run_phase(monkeypatch, module, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", [module.__name__, *argv])
    module.main()


def _run_posterior(monkeypatch, sampler, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", ["posterior", *argv])
    posterior.run_posterior(posterior.parse_args(), sampler)


@pytest.fixture
def results_tree(tmp_path, monkeypatch) -> Path:
    """Empty results root in a fresh cwd, with git lookups stubbed out."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("analysis.run_context._git_commit_hash", lambda: "abc123")
    return tmp_path / "results" / "overdispersed"


@pytest.fixture
def pipeline_run(results_tree, monkeypatch, fake_sampler) -> Path:
    """All three phases in run-directory mode; returns the run directory."""
    _run_phase(monkeypatch, overdispersion, "--run-id", RUN_ID)
    _run_phase(monkeypatch, wald, "--run-id", RUN_ID, "--n-simulations", "20")
    _run_posterior(
        monkeypatch,
        fake_sampler,
        "--run-id",
        RUN_ID,
        "--n-draws",
        "300",
        "--n-chains",
        "2",
    )
    return results_tree / RUN_ID


# ── Full pipeline ────────────────────────────────────────────────────────────


@pytest.mark.integration
class TestPipelineOutputs:
    """Every phase writes its data, plots, metadata, and report."""

    @pytest.mark.parametrize(
        "relpath",
        [
            "01_overdispersion/data/replicates.parquet",
            "01_overdispersion/data/count_distribution.parquet",
            "01_overdispersion/data/dispersion.json",
            "01_overdispersion/plots/count_histogram.png",
            "01_overdispersion/plots/replicate_proportions.png",
            "02_wald/data/intervals.parquet",
            "02_wald/data/confidence_sweep.parquet",
            "02_wald/data/coverage.parquet",
            "02_wald/plots/interval_markers.png",
            "02_wald/plots/coverage_curve.png",
            "03_posterior/data/posterior_summary.parquet",
            "03_posterior/data/interval_comparison.parquet",
            "03_posterior/data/ppc_dispersion.parquet",
            "03_posterior/data/convergence_binomial.json",
            "03_posterior/data/convergence_beta_binomial.json",
            "03_posterior/data/idata_binomial.nc",
            "03_posterior/plots/posterior_vs_wald.png",
            "03_posterior/plots/ppc_dispersion.png",
        ],
    )
    def test_artifact_exists(self, pipeline_run, relpath):
        assert (pipeline_run / relpath).exists()

    @pytest.mark.parametrize("phase", ["01_overdispersion", "02_wald", "03_posterior"])
    def test_run_metadata(self, pipeline_run, phase):
        info = json.loads((pipeline_run / phase / "run_info.json").read_text())
        assert info["run_id"] == RUN_ID
        assert info["failed"] is False
        assert info["git_commit"] == "abc123"
        assert (pipeline_run / phase / "run_log.txt").read_text()
        assert (pipeline_run / phase / f"{phase}_report.html").exists()
        assert (pipeline_run / phase / "README.md").exists()

    def test_latest_points_at_run(self, pipeline_run, results_tree):
        latest = results_tree / "latest"
        assert latest.is_symlink()
        assert latest.resolve() == pipeline_run.resolve()

    def test_report_symlinks(self, pipeline_run, results_tree):
        for phase in ("01_overdispersion", "02_wald", "03_posterior"):
            assert (results_tree / f"{phase}_report.html").exists()


@pytest.mark.integration
class TestPhaseContracts:
    """Downstream phases consume exactly what upstream phases wrote."""

    def test_replicates_match_scenario(self, pipeline_run):
        df = pl.read_parquet(pipeline_run / "01_overdispersion" / "data" / "replicates.parquet")
        expected = SCENARIOS["overdispersed"].generate()
        assert tuple(df.sort("replicate")["successes"].to_list()) == expected.successes

    def test_comparison_uses_upstream_wald(self, pipeline_run):
        intervals = pl.read_parquet(pipeline_run / "02_wald" / "data" / "intervals.parquet")
        comparison = pl.read_parquet(
            pipeline_run / "03_posterior" / "data" / "interval_comparison.parquet"
        )
        wald_up = intervals.filter(pl.col("method") == "wald").row(0, named=True)
        wald_down = comparison.filter(pl.col("method") == "wald").row(0, named=True)
        assert wald_down["lower"] == pytest.approx(wald_up["lower"])
        assert wald_down["upper"] == pytest.approx(wald_up["upper"])

    def test_credible_intervals_admissible(self, pipeline_run):
        comparison = pl.read_parquet(
            pipeline_run / "03_posterior" / "data" / "interval_comparison.parquet"
        )
        credible = comparison.filter(pl.col("kind") == "credible")
        assert credible.height == 2
        assert credible["admissible"].all()

    def test_convergence_json(self, pipeline_run):
        diag = json.loads(
            (pipeline_run / "03_posterior" / "data" / "convergence_beta_binomial.json").read_text()
        )
        assert diag["variables"] == ["p", "kappa"]
        assert diag["divergences"] == 0

    def test_dispersion_manifest(self, pipeline_run):
        manifest = json.loads(
            (pipeline_run / "01_overdispersion" / "data" / "dispersion.json").read_text()
        )
        assert manifest["scenario"]["name"] == "overdispersed"
        assert manifest["n_replicates"] == 10


# ── Standalone phases ────────────────────────────────────────────────────────


@pytest.mark.integration
class TestStandalonePhases:
    """Phases without a run ID fall back to regeneration and legacy directories."""

    def test_wald_without_upstream_regenerates(self, results_tree, monkeypatch):
        _run_phase(monkeypatch, wald, "--scenario", "sparse", "--skip-coverage")
        sparse_root = results_tree.parent / "sparse" / "02_wald"
        assert (sparse_root / "latest").is_symlink()
        intervals = pl.read_parquet(sparse_root / "latest" / "data" / "intervals.parquet")
        assert set(intervals["method"].to_list()) == {"wald", "wilson", "replicate_t"}
        assert not (sparse_root / "latest" / "data" / "coverage.parquet").exists()

    def test_posterior_single_model(self, results_tree, monkeypatch, fake_sampler):
        _run_posterior(
            monkeypatch,
            fake_sampler,
            "--models",
            "binomial",
            "--n-draws",
            "200",
            "--n-chains",
            "2",
        )
        assert fake_sampler.calls == ["binomial"]
        latest = results_tree / "03_posterior" / "latest"
        summary = pl.read_parquet(latest / "data" / "posterior_summary.parquet")
        assert summary["model"].to_list() == ["binomial"]

    def test_upstream_resolution_after_legacy_run(self, results_tree, monkeypatch):
        _run_phase(monkeypatch, overdispersion)
        resolved = resolve_upstream_dir("01_overdispersion", results_tree)
        assert resolved == results_tree / "01_overdispersion" / "latest"
        assert (resolved / "data" / "replicates.parquet").exists()

    def test_generated_run_ids_do_not_collide(self, results_tree, monkeypatch):
        first = generate_run_id("overdispersed", results_root=results_tree)
        _run_phase(monkeypatch, overdispersion, "--run-id", first)
        second = generate_run_id("overdispersed", results_root=results_tree)
        assert second == f"{first}.1"
