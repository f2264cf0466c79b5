"""Reusable run context for structured analysis output.

Every analysis phase uses RunContext to get:
  - Structured output directories: results/<scenario>/<analysis>/<date>/plots/ + data/
  - Automatic console log capture (run_log.txt)
  - Run metadata (run_info.json): git hash, timestamp, parameters
  - A `latest` symlink pointing to the most recent run
  - A convenience report symlink in the scenario root
    (e.g. 02_wald_report.html → 02_wald/latest/...)

Run-directory mode (pipeline runs):
  When run_id is set, all phases write into a single grouped directory:
    results/<scenario>/<run_id>/<analysis>/plots/ + data/
  A scenario-level `latest` symlink points to the run directory.

Legacy mode (individual phase runs):
  When run_id is None, each phase writes to its own date directory:
    results/<scenario>/<analysis>/<date>/plots/ + data/
  A phase-level `latest` symlink points to the date directory.

Usage:
    with RunContext(
        scenario="overdispersed",
        analysis_name="02_wald",
        params=vars(args),
        primer=WALD_PRIMER,
    ) as ctx:
        intervals.write_parquet(ctx.data_dir / "intervals.parquet")
        save_fig(fig, ctx.plots_dir / "plot.png")
"""

import io
import json
import re
import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import TextIO

from binomlab.config import PACKAGE_VERSION, RESULTS_ROOT


class _TeeStream:
    """Wraps a stream to duplicate output to both the original stream and a buffer.

    All print() output goes to the console (so the user sees progress) and to
    an internal StringIO buffer (captured for run_log.txt).
    """

    def __init__(self, original: io.TextIOBase) -> None:
        self._original = original
        self._buffer = io.StringIO()

    def write(self, data: str) -> int:
        self._original.write(data)
        self._buffer.write(data)
        return len(data)

    def flush(self) -> None:
        self._original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


def _normalize_scenario(scenario: str) -> str:
    """Convert a scenario label to its directory name.

    Examples:
        "Overdispersed"   -> "overdispersed"
        "sparse_boundary" -> "sparse-boundary"
        " binomial "      -> "binomial"
    """
    return re.sub(r"[\s_]+", "-", scenario.strip().lower())


def _git_commit_hash() -> str:
    """Get the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds into a human-readable string.

    Examples: "3.2s", "1m 45s", "1h 12m 5s"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m {secs}s"


def _next_run_label(analysis_dir: Path, today: str) -> str:
    """Return a unique run label for today, appending .1, .2, etc. if needed.

    First run of the day:  "261019"
    Second run:            "261019.1"
    """
    if not (analysis_dir / today).exists() or (analysis_dir / today).is_symlink():
        return today

    n = 1
    while (analysis_dir / f"{today}.{n}").exists():
        n += 1
    return f"{today}.{n}"


def generate_run_id(scenario: str, results_root: Path | None = None) -> str:
    """Generate a run ID for grouping pipeline phases.

    Format: {scenario}-{YYMMDD}. Same-day collisions get .1, .2, etc. suffixes
    when *results_root* is given.

    Examples:
        "overdispersed" → "overdispersed-261019"
        "overdispersed" (second run same day) → "overdispersed-261019.1"
    """
    base = f"{_normalize_scenario(scenario)}-{datetime.now(UTC).strftime('%y%m%d')}"

    if results_root is None:
        return base

    if not (results_root / base).exists() or (results_root / base).is_symlink():
        return base
    n = 1
    while (results_root / f"{base}.{n}").exists():
        n += 1
    return f"{base}.{n}"


def resolve_upstream_dir(
    phase: str,
    results_root: Path,
    run_id: str | None = None,
    override: Path | None = None,
) -> Path:
    """Resolve the output directory for an upstream phase.

    Precedence:
      1. Explicit CLI override (e.g. --overdispersion-dir /some/path)
      2. Run-directory path: results_root/{run_id}/{phase}
      3. Legacy phase path: results_root/{phase}/latest
      4. Run-layout fallback: results_root/latest/{phase}

    The caller should verify the returned path exists before reading from it.
    """
    if override is not None:
        return override
    if run_id is not None:
        return results_root / run_id / phase
    legacy = results_root / phase / "latest"
    if legacy.exists():
        return legacy
    return results_root / "latest" / phase


def _replace_symlink(link: Path, target: Path | str) -> None:
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)


class RunContext:
    """Context manager that sets up structured output for an analysis run.

    Creates the directory tree, captures console output, and writes
    metadata on exit.

    Attributes:
        scenario: Normalized scenario name (e.g. "overdispersed").
        analysis_name: Name of the analysis phase (e.g. "02_wald").
        params: Script parameters to record in run_info.json.
        run_dir: Root of this run's output.
        plots_dir: Directory for PNG plots.
        data_dir: Directory for parquet/JSON/NetCDF outputs.
    """

    def __init__(
        self,
        scenario: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.scenario = _normalize_scenario(scenario)
        self.analysis_name = analysis_name
        self.params = params or {}
        self.run_id = run_id

        root = results_root or Path(RESULTS_ROOT)
        today = datetime.now(UTC).strftime("%y%m%d")
        self._scenario_root = root / self.scenario

        if run_id is not None:
            self._analysis_dir = self._scenario_root / run_id / analysis_name
            self.run_dir = self._analysis_dir
            self._run_label = run_id
        else:
            self._analysis_dir = self._scenario_root / analysis_name
            self._run_label = _next_run_label(self._analysis_dir, today)
            self.run_dir = self._analysis_dir / self._run_label

        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._today = today
        self._primer = primer
        self._tee: _TeeStream | None = None
        self._original_stdout: TextIO | None = None
        self._start_time: datetime | None = None

        self.report = self._init_report()

    def __enter__(self) -> "RunContext":
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.finalize(failed=exc_type is not None)

    def _init_report(self) -> object:
        """Initialize a ReportBuilder, or None if the report module isn't available."""
        try:
            try:
                from analysis.report import ReportBuilder
            except ModuleNotFoundError:
                from report import ReportBuilder  # type: ignore[no-redef]
            return ReportBuilder(
                title=f"{self.analysis_name.upper()} Report",
                scenario=self.scenario,
            )
        except ImportError:
            return None

    def setup(self) -> None:
        """Create directories, write primer, and start log capture."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.plots_dir.mkdir(exist_ok=True)
        self.data_dir.mkdir(exist_ok=True)

        if self._primer:
            (self._analysis_dir / "README.md").write_text(self._primer, encoding="utf-8")

        self._original_stdout = sys.stdout
        self._tee = _TeeStream(sys.stdout)
        sys.stdout = self._tee  # type: ignore[assignment]
        self._start_time = datetime.now(UTC)

    def finalize(self, *, failed: bool = False) -> None:
        """Write run_info.json, run_log.txt, the HTML report, and update symlinks."""
        # Restore stdout first so metadata writes aren't captured
        log_text = self._tee.getvalue() if self._tee is not None else ""
        if self._original_stdout is not None:
            sys.stdout = self._original_stdout  # type: ignore[assignment]

        (self.run_dir / "run_log.txt").write_text(log_text, encoding="utf-8")

        end_time = datetime.now(UTC)
        elapsed_seconds = (end_time - self._start_time).total_seconds() if self._start_time else 0.0
        run_info = {
            "analysis": self.analysis_name,
            "scenario": self.scenario,
            "run_date": self._today,
            "run_label": self._run_label,
            "run_id": self.run_id,
            "failed": failed,
            "timestamp_start": (self._start_time.isoformat() if self._start_time else None),
            "timestamp_end": end_time.isoformat(),
            "elapsed_seconds": round(elapsed_seconds, 1),
            "elapsed_display": _format_elapsed(elapsed_seconds),
            "git_commit": _git_commit_hash(),
            "python_version": sys.version,
            "binomlab_version": PACKAGE_VERSION,
            "params": self.params,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=2, default=str)

        print(f"\n{self.analysis_name.upper()} completed in {run_info['elapsed_display']}")

        if self.report is not None and getattr(self.report, "has_sections", False):
            self.report.git_hash = run_info["git_commit"]
            self.report.elapsed_display = run_info["elapsed_display"]
            report_name = f"{self.analysis_name}_report.html"
            self.report.write(self.run_dir / report_name)

            report_link = self._scenario_root / report_name
            if self.run_id is not None:
                _replace_symlink(report_link, Path("latest") / self.analysis_name / report_name)
            else:
                _replace_symlink(report_link, Path(self.analysis_name) / "latest" / report_name)

        # Failed runs leave `latest` alone so downstream phases don't read partial output
        if not failed:
            if self.run_id is not None:
                _replace_symlink(self._scenario_root / "latest", self.run_id)
            else:
                _replace_symlink(self._analysis_dir / "latest", self._run_label)
