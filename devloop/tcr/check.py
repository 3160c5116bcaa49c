"""
One invocation of the TCR check.

Sequence: changed files -> targets -> tests with coverage -> commit gate.
An empty change set is a no-op that succeeds without running anything or
touching the run state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from devloop.tcr.changes import ChangeSet, ChangeSetDetector
from devloop.tcr.gate import CommitGate, GateResult, VersionControl
from devloop.tcr.runner import TargetRunner
from devloop.tcr.state import FailureStatePersistence
from devloop.tcr.vcs import GitClient

if TYPE_CHECKING:
    from devloop.config import DevloopConfig
    from devloop.logger import DevloopLogger


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2


class CheckStatus(Enum):
    NOOP = "noop"
    PASS = "pass"
    FAIL = "fail"


@dataclass
class CheckResult:
    """Outcome of one check, ready to be formatted for the caller."""
    status: CheckStatus
    changes: ChangeSet = field(default_factory=ChangeSet)
    gate: Optional[GateResult] = None

    @property
    def exit_code(self) -> int:
        return EXIT_BLOCKED if self.status == CheckStatus.FAIL else EXIT_OK

    @property
    def message(self) -> str:
        if self.status == CheckStatus.NOOP:
            return "Nothing to check: no changes in any target."
        if self.status == CheckStatus.PASS:
            return f"TCR passed; committed {self.gate.commit_id}"
        return f"TCR failed; failure streak {self.gate.failure_streak}"

    def format(self, verbose: bool = False) -> list[str]:
        """Condensed lines by default; raw runner output when verbose."""
        lines = [self.message]
        if self.gate is None:
            return lines
        lines.append(f"Targets: {self.changes.label}")
        lines.extend(self.gate.summary)
        if self.gate.reconsider:
            lines.append(
                f"{self.gate.failure_streak} consecutive failures: "
                "reconsider your approach before trying again."
            )
        if verbose and self.gate.raw_output:
            lines.append("")
            lines.append(self.gate.raw_output)
        return lines


class TCRCheckRunner:
    """Wires change detection, the test runner and the commit gate together."""

    def __init__(
        self,
        vcs: VersionControl,
        detector: ChangeSetDetector,
        runner: TargetRunner,
        gate: CommitGate,
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self.vcs = vcs
        self.detector = detector
        self.runner = runner
        self.gate = gate
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def run(self, step_name: Optional[str] = None) -> CheckResult:
        """
        Run one check.

        Raises:
            VCSError: If git cannot list changes or commit.
            PersistenceError: If the run state cannot be read or written.
        """
        changes = self.detector.classify(self.vcs.changed_files())
        self._log("changes_detected", {
            "files": len(changes.files),
            "targets": changes.targets,
            "unmatched": len(changes.unmatched),
        })

        if changes.is_empty:
            return CheckResult(status=CheckStatus.NOOP, changes=changes)

        run = self.runner.run(changes.targets, with_coverage=True)
        gate_result = self.gate.check(run, step_name)
        status = CheckStatus.PASS if gate_result.passed else CheckStatus.FAIL
        return CheckResult(status=status, changes=changes, gate=gate_result)


def build_check_runner(
    config: DevloopConfig,
    logger: Optional[DevloopLogger] = None,
) -> TCRCheckRunner:
    """Construct a TCRCheckRunner from configuration."""
    vcs = GitClient(config.repo_root, logger=logger)
    state_store = FailureStatePersistence(config.tcr_state_path, logger=logger)
    gate = CommitGate(
        state_store,
        vcs,
        max_failures=config.tcr.max_failures,
        wip_prefix=config.tcr.wip_prefix,
        logger=logger,
    )
    return TCRCheckRunner(
        vcs=vcs,
        detector=ChangeSetDetector(config.tcr.targets),
        runner=TargetRunner(config, logger=logger),
        gate=gate,
        logger=logger,
    )
