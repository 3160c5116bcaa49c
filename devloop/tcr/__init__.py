"""Test-Commit-Revert check engine."""

from devloop.tcr.changes import ChangeSet, ChangeSetDetector
from devloop.tcr.check import CheckResult, CheckStatus, TCRCheckRunner, build_check_runner
from devloop.tcr.gate import CommitGate, GateResult, GateState
from devloop.tcr.runner import AggregateRunResult, TargetRunner, TargetRunResult
from devloop.tcr.state import FailureStatePersistence
from devloop.tcr.vcs import GitClient

__all__ = [
    "AggregateRunResult",
    "ChangeSet",
    "ChangeSetDetector",
    "CheckResult",
    "CheckStatus",
    "CommitGate",
    "FailureStatePersistence",
    "GateResult",
    "GateState",
    "GitClient",
    "TCRCheckRunner",
    "TargetRunResult",
    "TargetRunner",
    "build_check_runner",
]
