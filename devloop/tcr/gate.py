"""
Commit gate for the TCR loop.

The gate is armed when the last check passed and blocked after a failure.
A passing run resets the failure streak and commits; a failing run saves the
full output, increments the streak and never commits. Once the streak reaches
``max_failures`` every further failure carries a reconsider advisory until a
check passes again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol

from devloop.models import RunOutcome, TCRRunState
from devloop.tcr.runner import AggregateRunResult
from devloop.tcr.state import FailureStatePersistence

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger


DEFAULT_STEP_NAME = "tcr checkpoint"


class VersionControl(Protocol):
    def changed_files(self) -> set[str]: ...

    def commit(self, message: str) -> str: ...


class GateState(Enum):
    ARMED = "armed"
    BLOCKED = "blocked"

    @classmethod
    def from_run_state(cls, state: TCRRunState) -> GateState:
        if state.last_outcome == RunOutcome.FAIL:
            return cls.BLOCKED
        return cls.ARMED


@dataclass
class GateResult:
    """What the gate decided for one check."""
    passed: bool
    failure_streak: int
    commit_id: Optional[str] = None
    reconsider: bool = False
    step_name: Optional[str] = None
    summary: list[str] = field(default_factory=list)
    raw_output: str = ""

    @property
    def state(self) -> GateState:
        return GateState.ARMED if self.passed else GateState.BLOCKED


class CommitGate:
    """Turns an aggregate test result into a commit or a recorded failure."""

    def __init__(
        self,
        state_store: FailureStatePersistence,
        vcs: VersionControl,
        max_failures: int = 5,
        wip_prefix: str = "WIP: ",
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self.state_store = state_store
        self.vcs = vcs
        self.max_failures = max_failures
        self.wip_prefix = wip_prefix
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    @property
    def state(self) -> GateState:
        return GateState.from_run_state(self.state_store.load())

    def commit_message(self, step_name: Optional[str]) -> str:
        return f"{self.wip_prefix}{step_name or DEFAULT_STEP_NAME}"

    def check(self, run: AggregateRunResult, step_name: Optional[str] = None) -> GateResult:
        """
        Record the run and commit when it passed.

        Raises:
            PersistenceError: If the run state cannot be read or written.
            VCSError: If the commit fails after a passing run.
        """
        summary = run.summary_lines()

        if run.passed:
            with self.state_store.session() as state:
                state.last_outcome = RunOutcome.PASS
                state.failure_streak = 0
                state.last_full_output = None
                state.last_step_name = step_name

            commit_id = self.vcs.commit(self.commit_message(step_name))
            self._log("tcr_pass", {
                "step_name": step_name,
                "commit": commit_id,
                "targets": [r.target for r in run.results],
            })
            return GateResult(
                passed=True,
                failure_streak=0,
                commit_id=commit_id,
                step_name=step_name,
                summary=summary,
                raw_output=run.raw_output,
            )

        with self.state_store.session() as state:
            state.last_outcome = RunOutcome.FAIL
            state.failure_streak += 1
            state.last_full_output = run.raw_output
            state.last_step_name = step_name
            streak = state.failure_streak

        reconsider = streak >= self.max_failures
        self._log("tcr_fail", {
            "step_name": step_name,
            "failure_streak": streak,
            "failed_targets": run.failed_targets,
        }, level="warn")
        if reconsider:
            self._log("tcr_reconsider", {
                "failure_streak": streak,
                "max_failures": self.max_failures,
            }, level="warn")

        return GateResult(
            passed=False,
            failure_streak=streak,
            reconsider=reconsider,
            step_name=step_name,
            summary=summary,
            raw_output=run.raw_output,
        )
