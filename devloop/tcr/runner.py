"""
Per-target test execution with coverage gating.

Key components:
- TargetRunner: runs each target's test command in a subprocess
- TargetRunResult: outcome of one target (tests, coverage, raw output)
- AggregateRunResult: combined result; failed if any target failed
- Coverage readers for istanbul json-summary, llvm-cov JSON and plain text

Coverage is a gate: when coverage is requested, a target whose metrics fall
below its thresholds fails even if every test passed.
"""

from __future__ import annotations

import json
import re
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

from devloop.config import DevloopConfig, TargetConfig

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger


TEXT_COVERAGE_LINE = re.compile(
    r"^\s*(lines|functions|statements|branches|regions)\b[^\n%]*?(\d+(?:\.\d+)?)\s*%",
    re.IGNORECASE | re.MULTILINE,
)


def parse_istanbul_summary(data: dict[str, Any]) -> dict[str, float]:
    """Read total percentages from an istanbul coverage-summary.json."""
    total = data.get("total") or {}
    metrics = {}
    for metric, values in total.items():
        if isinstance(values, dict) and isinstance(values.get("pct"), (int, float)):
            metrics[metric] = float(values["pct"])
    return metrics


def parse_llvm_cov_export(data: dict[str, Any]) -> dict[str, float]:
    """Read total percentages from ``cargo llvm-cov --json`` output."""
    exports = data.get("data") or []
    if not exports:
        return {}
    totals = exports[0].get("totals") or {}
    metrics = {}
    for metric, values in totals.items():
        if isinstance(values, dict) and isinstance(values.get("percent"), (int, float)):
            metrics[metric] = float(values["percent"])
    return metrics


def parse_coverage_json(data: Any) -> dict[str, float]:
    """Detect the JSON coverage format and read its totals."""
    if not isinstance(data, dict):
        return {}
    if "total" in data:
        return parse_istanbul_summary(data)
    if "data" in data:
        return parse_llvm_cov_export(data)
    return {}


def parse_text_coverage(output: str) -> dict[str, float]:
    """
    Scan free-form output for lines like ``Lines: 92.5%``.

    The last value reported for a metric wins.
    """
    metrics: dict[str, float] = {}
    for metric, pct in TEXT_COVERAGE_LINE.findall(output):
        metrics[metric.lower()] = float(pct)
    return metrics


def _json_from_output(output: str) -> Optional[Any]:
    """
    Parse the JSON document a coverage tool printed at the end of stdout.

    Scans backwards for the last line starting with "{" so braces in test
    output printed earlier are ignored.
    """
    lines = output.splitlines()
    for index in range(len(lines) - 1, -1, -1):
        if not lines[index].lstrip().startswith("{"):
            continue
        try:
            return json.loads("\n".join(lines[index:]))
        except ValueError:
            continue
    return None


@dataclass
class TargetRunResult:
    """Outcome of running one target's tests."""
    target: str
    passed: bool
    tests_passed: bool
    raw_output: str = ""
    duration_ms: int = 0
    coverage: Optional[dict[str, float]] = None
    thresholds: dict[str, float] = field(default_factory=dict)
    coverage_failures: list[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None

    def summary(self) -> str:
        """One line: verdict, test status and coverage per metric."""
        status = "PASS" if self.passed else "FAIL"
        parts = [f"{self.target}: {status}"]
        if self.error:
            parts.append(self.error)
        else:
            parts.append("tests passed" if self.tests_passed else "tests failed")
        if self.coverage:
            metrics = [
                f"{metric} {self.coverage[metric]:.2f}%"
                for metric in self.thresholds
                if metric in self.coverage
            ] or [f"{m} {v:.2f}%" for m, v in sorted(self.coverage.items())]
            parts.append("coverage " + ", ".join(metrics))
        return " | ".join(parts)


@dataclass
class AggregateRunResult:
    """Results for every target in one check."""
    results: list[TargetRunResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failed_targets(self) -> list[str]:
        return [r.target for r in self.results if not r.passed]

    @property
    def raw_output(self) -> str:
        sections = []
        for r in self.results:
            sections.append(f"===== {r.target} (exit {r.exit_code}) =====\n{r.raw_output.rstrip()}")
        return "\n\n".join(sections)

    def summary_lines(self) -> list[str]:
        lines = []
        for r in self.results:
            lines.append(r.summary())
            lines.extend(f"  - {failure}" for failure in r.coverage_failures)
        return lines

    def result_for(self, target: str) -> Optional[TargetRunResult]:
        for r in self.results:
            if r.target == target:
                return r
        return None


class TargetRunner:
    """
    Test runner adapter: invokes each target's test command.

    Targets run independently; one target failing never stops another from
    running and reporting. With ``parallel`` enabled, targets run in
    separate threads and every subprocess is awaited before results are
    combined.
    """

    def __init__(
        self,
        config: DevloopConfig,
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self.config = config
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _working_dir(self, target: TargetConfig) -> Path:
        return Path(self.config.repo_root) / target.cwd

    def _read_coverage(
        self,
        target: TargetConfig,
        stdout: str,
        started_at: float,
    ) -> Optional[dict[str, float]]:
        """
        Collect coverage metrics for a finished run.

        A configured report file is only trusted when it was written during
        this run. Otherwise JSON printed on stdout is tried, then text lines.
        """
        if target.coverage_report:
            report = self._working_dir(target) / target.coverage_report
            try:
                fresh = report.is_file() and report.stat().st_mtime >= started_at - 1
                if fresh:
                    metrics = parse_coverage_json(json.loads(report.read_text()))
                    if metrics:
                        return metrics
            except (OSError, ValueError) as e:
                self._log("coverage_report_unreadable", {
                    "target": target.name,
                    "path": str(report),
                    "error": str(e),
                }, level="warn")

        metrics = parse_coverage_json(_json_from_output(stdout))
        if metrics:
            return metrics

        metrics = parse_text_coverage(stdout)
        return metrics or None

    @staticmethod
    def check_thresholds(
        coverage: Optional[dict[str, float]],
        thresholds: dict[str, float],
    ) -> list[str]:
        """Describe every metric below its threshold (or missing)."""
        if coverage is None:
            return ["coverage report unavailable"]
        failures = []
        for metric, minimum in thresholds.items():
            actual = coverage.get(metric)
            if actual is None:
                failures.append(f"{metric} coverage not reported")
            elif actual < minimum:
                failures.append(
                    f"{metric} coverage {actual:.2f}% is below threshold {minimum:.2f}%"
                )
        return failures

    def run_target(self, target: TargetConfig, with_coverage: bool) -> TargetRunResult:
        """Run one target's tests and evaluate its coverage gate."""
        cmd = target.command_for(with_coverage)
        started_at = time.time()
        start = time.monotonic()

        try:
            completed = subprocess.run(
                cmd,
                cwd=self._working_dir(target),
                capture_output=True,
                text=True,
                timeout=target.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            output = e.stdout or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            return TargetRunResult(
                target=target.name,
                passed=False,
                tests_passed=False,
                raw_output=output,
                duration_ms=int((time.monotonic() - start) * 1000),
                thresholds=dict(target.thresholds),
                error=f"timed out after {e.timeout} seconds",
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            return TargetRunResult(
                target=target.name,
                passed=False,
                tests_passed=False,
                duration_ms=int((time.monotonic() - start) * 1000),
                thresholds=dict(target.thresholds),
                error=f"command not runnable: {e}",
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        raw_output = completed.stdout
        if completed.stderr:
            raw_output = f"{raw_output}\n{completed.stderr}" if raw_output else completed.stderr
        tests_passed = completed.returncode == 0

        coverage = None
        coverage_failures: list[str] = []
        if with_coverage:
            coverage = self._read_coverage(target, completed.stdout, started_at)
            if tests_passed:
                coverage_failures = self.check_thresholds(coverage, target.thresholds)

        return TargetRunResult(
            target=target.name,
            passed=tests_passed and not coverage_failures,
            tests_passed=tests_passed,
            raw_output=raw_output,
            duration_ms=duration_ms,
            coverage=coverage,
            thresholds=dict(target.thresholds),
            coverage_failures=coverage_failures,
            exit_code=completed.returncode,
        )

    def run(self, targets: Iterable[str], with_coverage: bool = True) -> AggregateRunResult:
        """
        Run the named targets.

        Raises:
            ConfigError: If a target name is not configured.
        """
        selected = [self.config.tcr.target(name) for name in targets]
        results: dict[str, TargetRunResult] = {}
        errors: list[BaseException] = []

        def worker(target: TargetConfig) -> None:
            try:
                results[target.name] = self.run_target(target, with_coverage)
            except Exception as e:
                errors.append(e)

        if self.config.tcr.parallel and len(selected) > 1:
            threads = [
                threading.Thread(target=worker, args=(t,), name=f"tcr-{t.name}")
                for t in selected
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        else:
            for target in selected:
                worker(target)

        if errors:
            raise errors[0]

        ordered = [results[t.name] for t in selected]
        for result in ordered:
            self._log("target_run_complete", {
                "target": result.target,
                "passed": result.passed,
                "tests_passed": result.tests_passed,
                "coverage": result.coverage,
                "duration_ms": result.duration_ms,
            })
        return AggregateRunResult(results=ordered)
