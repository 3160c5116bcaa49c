"""
Core data models for devloop.

This module defines the foundational data structures used throughout the system:
- Enums for issue stages, issue types, spec statuses and review verdicts
- Dataclasses for issue and spec records, validation results and TCR run state
- Dictionary serialization for everything that is persisted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from devloop.errors import InvalidStageError, InvalidStatusError, UsageError


class Stage(Enum):
    """
    Lifecycle stages an issue moves through, in canonical order.

    backlog -> todo -> in-progress -> in-review -> done
    """
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    IN_REVIEW = "in-review"
    DONE = "done"

    @classmethod
    def parse(cls, name: str) -> Stage:
        """
        Parse a stage name, accepting either the value or the enum name.

        Raises:
            InvalidStageError: If the name is not a declared stage.
        """
        normalized = (name or "").strip().lower().replace("_", "-")
        for stage in cls:
            if stage.value == normalized:
                return stage
        raise InvalidStageError(name, [s.value for s in cls])

    @classmethod
    def first(cls) -> Stage:
        """The stage new issues are created in."""
        return next(iter(cls))

    @property
    def order(self) -> int:
        return list(Stage).index(self)


class IssueType(Enum):
    """Kinds of issue; some validators only apply to one kind."""
    FEATURE = "feature"
    BUG = "bug"
    TASK = "task"

    @classmethod
    def parse(cls, name: str) -> IssueType:
        normalized = (name or "").strip().lower()
        for issue_type in cls:
            if issue_type.value == normalized:
                return issue_type
        raise UsageError(
            f"Invalid issue type '{name}'. Valid types: {', '.join(t.value for t in cls)}"
        )


class SpecStatus(Enum):
    """Statuses of an individual spec within an issue."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    IN_REVIEW = "in-review"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, name: str) -> SpecStatus:
        """
        Parse a status name.

        Raises:
            InvalidStatusError: If the name is not a declared status.
        """
        normalized = (name or "").strip().lower().replace("_", "-")
        for status in cls:
            if status.value == normalized:
                return status
        raise InvalidStatusError(name, [s.value for s in cls])


class Verdict(Enum):
    """Outcomes a review section can record."""
    APPROVED = "APPROVED"
    NEEDS_WORK = "NEEDS_WORK"


class RunOutcome(Enum):
    """Outcome of a single TCR check invocation."""
    PASS = "pass"
    FAIL = "fail"


def today() -> str:
    """Today's date in ISO format (YYYY-MM-DD)."""
    return date.today().isoformat()


def utc_now() -> str:
    """Current UTC timestamp in ISO format with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Issue:
    """
    An issue record.

    The stage field is authoritative; only the StageTransitionEngine
    changes it. Header keys this model does not know about are kept in
    ``extra`` so a rewrite never drops them.
    """
    name: str
    stage: Stage
    type: IssueType = IssueType.FEATURE
    title: str = ""
    created: str = ""
    owner: Optional[str] = None
    body: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def header(self) -> dict[str, Any]:
        """Key/value header written above the body."""
        data: dict[str, Any] = {
            "name": self.name,
            "stage": self.stage.value,
            "type": self.type.value,
            "title": self.title,
            "created": self.created,
            "owner": self.owner,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_header(cls, header: dict[str, Any], body: str) -> Issue:
        """
        Build an issue from a parsed header and body.

        Raises:
            KeyError: If name or stage is missing.
            UsageError: If stage or type hold unknown values.
        """
        known = {"name", "stage", "type", "title", "created", "owner"}
        return cls(
            name=str(header["name"]),
            stage=Stage.parse(str(header["stage"])),
            type=IssueType.parse(str(header.get("type") or "feature")),
            title=str(header.get("title") or ""),
            created=str(header.get("created") or ""),
            owner=header.get("owner") or None,
            body=body,
            extra={k: v for k, v in header.items() if k not in known},
        )

    def to_summary(self) -> dict[str, Any]:
        """Summary used by the JSON listing."""
        return {
            "name": self.name,
            "stage": self.stage.value,
            "type": self.type.value,
            "title": self.title,
            "created": self.created,
            "owner": self.owner,
        }


@dataclass
class SpecRecord:
    """
    A spec: an independently tracked deliverable belonging to an issue.

    ``completed`` is set if and only if status is COMPLETED.
    """
    issue: str
    name: str
    status: SpecStatus = SpecStatus.PENDING
    created: str = ""
    completed: Optional[str] = None
    dependencies: list[str] = field(default_factory=list)
    review_round: int = 0
    title: str = ""
    body: str = ""

    def header(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "status": self.status.value,
            "created": self.created,
            "completed": self.completed,
            "dependencies": list(self.dependencies),
            "review_round": self.review_round,
        }

    @classmethod
    def from_header(cls, issue: str, header: dict[str, Any], body: str) -> SpecRecord:
        completed = header.get("completed")
        return cls(
            issue=issue,
            name=str(header["name"]),
            title=str(header.get("title") or ""),
            status=SpecStatus.parse(str(header.get("status") or "pending")),
            created=str(header.get("created") or ""),
            completed=str(completed) if completed else None,
            dependencies=[str(d) for d in header.get("dependencies") or []],
            review_round=int(header.get("review_round") or 0),
            body=body,
        )

    def to_summary(self) -> dict[str, Any]:
        data = self.header()
        data["issue"] = self.issue
        return data


@dataclass
class Review:
    """
    A review section parsed from a spec body.

    ``verdict`` is the raw text found after the verdict label; only the
    exact values of Verdict gate transitions.
    """
    verdict: Optional[str]
    text: str = ""

    @property
    def is_approved(self) -> bool:
        return self.verdict == Verdict.APPROVED.value

    @property
    def needs_work(self) -> bool:
        return self.verdict == Verdict.NEEDS_WORK.value


@dataclass
class ValidationResult:
    """Outcome of one validation call. Never persisted."""
    valid: bool
    missing: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def fail(cls, *reasons: str) -> ValidationResult:
        return cls(valid=False, missing=list(reasons))


@dataclass
class TCRRunState:
    """
    Durable record of the last TCR check.

    Overwritten wholesale on every invocation; ``last_full_output`` is only
    retained after a failure.
    """
    last_outcome: Optional[RunOutcome] = None
    failure_streak: int = 0
    last_full_output: Optional[str] = None
    last_step_name: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "lastOutcome": self.last_outcome.value if self.last_outcome else None,
            "failureStreak": self.failure_streak,
            "lastFullOutput": self.last_full_output,
            "lastStepName": self.last_step_name,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TCRRunState:
        """
        Create from dictionary.

        Raises:
            ValueError: If the streak is negative or the outcome unknown.
        """
        outcome = data.get("lastOutcome")
        streak = int(data.get("failureStreak", 0))
        if streak < 0:
            raise ValueError(f"failureStreak must be non-negative, got {streak}")
        return cls(
            last_outcome=RunOutcome(outcome) if outcome else None,
            failure_streak=streak,
            last_full_output=data.get("lastFullOutput"),
            last_step_name=data.get("lastStepName"),
            updated_at=data.get("updatedAt"),
        )
