"""
Spec status state machine.

Specs move through a finer-grained lifecycle than issues:

    pending <-> in-progress <-> in-review <-> completed

(only the edges in VALID_TRANSITIONS are legal; completed -> in-review
re-opens a spec for another review round.)

Two edges are gated by the spec's review section and fail closed:
- in-review -> completed requires a review with verdict APPROVED
- in-review -> in-progress requires a review with verdict NEEDS_WORK
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

from devloop.errors import InvalidTransitionError, UsageError, ValidationFailed
from devloop.metadata import is_valid_slug
from devloop.models import Review, SpecRecord, SpecStatus, Verdict, today

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger
    from devloop.metadata import MetadataStore


VALID_TRANSITIONS: dict[SpecStatus, list[SpecStatus]] = {
    SpecStatus.PENDING: [SpecStatus.IN_PROGRESS],
    SpecStatus.IN_PROGRESS: [SpecStatus.PENDING, SpecStatus.IN_REVIEW],
    SpecStatus.IN_REVIEW: [SpecStatus.IN_PROGRESS, SpecStatus.COMPLETED],
    # No verdict precondition on re-review
    SpecStatus.COMPLETED: [SpecStatus.IN_REVIEW],
}

# Statuses a spec may hold while carrying a review with the given verdict
VERDICT_STATUSES: dict[Verdict, frozenset[SpecStatus]] = {
    Verdict.APPROVED: frozenset({SpecStatus.IN_REVIEW, SpecStatus.COMPLETED}),
    Verdict.NEEDS_WORK: frozenset({SpecStatus.IN_REVIEW, SpecStatus.IN_PROGRESS}),
}

# Edges that need a specific verdict on top of the table
REQUIRED_VERDICTS: dict[tuple[SpecStatus, SpecStatus], Verdict] = {
    (SpecStatus.IN_REVIEW, SpecStatus.COMPLETED): Verdict.APPROVED,
    (SpecStatus.IN_REVIEW, SpecStatus.IN_PROGRESS): Verdict.NEEDS_WORK,
}

REVIEW_HEADING = re.compile(r"^(#{1,6})\s+Review\b.*$", re.IGNORECASE)
ANY_HEADING = re.compile(r"^(#{1,6})\s+")
VERDICT_LINE = re.compile(
    r"^\s*(?:[-*]\s*)?\**\s*Verdict\s*\**\s*:\s*\**\s*(.*?)\s*$",
    re.IGNORECASE,
)


def is_valid_transition(current: SpecStatus, target: SpecStatus) -> bool:
    """Check if an edge is in the transition table."""
    return target in VALID_TRANSITIONS.get(current, [])


def is_terminal_status(status: SpecStatus) -> bool:
    """True only for completed (the spec meets its definition of done)."""
    return status == SpecStatus.COMPLETED


def needs_review(status: SpecStatus) -> bool:
    """True only for in-review."""
    return status == SpecStatus.IN_REVIEW


def parse_review(body: str) -> Optional[Review]:
    """
    Find the latest review section in a spec body.

    Any heading starting with "Review" opens a section (e.g. "## Review",
    "### Review Round 2"). Returns None when the body has no such section.
    """
    lines = body.splitlines()
    review: Optional[Review] = None
    index = 0
    while index < len(lines):
        heading = REVIEW_HEADING.match(lines[index])
        if not heading:
            index += 1
            continue

        level = len(heading.group(1))
        section: list[str] = []
        index += 1
        while index < len(lines):
            next_heading = ANY_HEADING.match(lines[index])
            if next_heading and len(next_heading.group(1)) <= level:
                break
            section.append(lines[index])
            index += 1

        verdict = None
        for line in section:
            match = VERDICT_LINE.match(line)
            if match:
                verdict = match.group(1).strip("*`_ ").strip() or None
                break
        review = Review(verdict=verdict, text="\n".join(section).strip())

    return review


def _verdict_of(review: Optional[Review]) -> Optional[Verdict]:
    if review is None or review.verdict is None:
        return None
    for verdict in Verdict:
        if review.verdict == verdict.value:
            return verdict
    return None


class SpecStatusStateMachine:
    """Validates and applies spec status transitions."""

    def allowed_targets(self, current: SpecStatus) -> list[SpecStatus]:
        return list(VALID_TRANSITIONS.get(current, []))

    def check(self, spec: SpecRecord, target: SpecStatus) -> None:
        """
        Raise if the transition is not allowed; never mutates the spec.

        Raises:
            InvalidTransitionError: If the edge is not in the table.
            ValidationFailed: If the review section blocks the edge.
        """
        current = spec.status
        if not is_valid_transition(current, target):
            raise InvalidTransitionError(
                current.value,
                target.value,
                [s.value for s in self.allowed_targets(current)],
            )

        review = parse_review(spec.body)
        reasons: list[str] = []

        required = REQUIRED_VERDICTS.get((current, target))
        if required is not None:
            if review is None:
                reasons.append(
                    f"Spec '{spec.name}' has no review section; moving from "
                    f"{current.value} to {target.value} requires verdict {required.value}"
                )
            elif review.verdict != required.value:
                found = review.verdict or "missing"
                reasons.append(
                    f"Spec '{spec.name}' review verdict is {found}; moving from "
                    f"{current.value} to {target.value} requires verdict {required.value}"
                )

        verdict = _verdict_of(review)
        if verdict is not None and not reasons and target not in VERDICT_STATUSES[verdict]:
            allowed = ", ".join(sorted(s.value for s in VERDICT_STATUSES[verdict]))
            reasons.append(
                f"Spec '{spec.name}' carries a {verdict.value} review, which is only "
                f"valid with status {allowed}; remove or update the review first"
            )

        if reasons:
            raise ValidationFailed(reasons[0], reasons)

    def transition(self, spec: SpecRecord, target: SpecStatus) -> SpecRecord:
        """
        Move a spec to a new status, updating derived fields.

        - entering in-review increments review_round
        - entering completed stamps the completed date
        - leaving completed clears it

        Raises:
            InvalidTransitionError: If the edge is not in the table.
            ValidationFailed: If a review precondition fails.
        """
        self.check(spec, target)

        if target == SpecStatus.IN_REVIEW:
            spec.review_round += 1
        if target == SpecStatus.COMPLETED:
            spec.completed = today()
        else:
            spec.completed = None

        spec.status = target
        return spec


class SpecService:
    """Loads, transitions and saves spec records."""

    def __init__(
        self,
        store: MetadataStore,
        machine: Optional[SpecStatusStateMachine] = None,
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self._store = store
        self._machine = machine or SpecStatusStateMachine()
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def set_status(self, issue: str, spec_name: str, status: str) -> SpecRecord:
        """
        Transition a stored spec to the named status and persist it.

        Raises:
            InvalidStatusError: If the status name is unknown.
            IssueNotFoundError / SpecNotFoundError: If the spec does not exist.
            ValidationFailed: If the transition is blocked.
        """
        target = SpecStatus.parse(status)
        spec = self._store.load_spec(issue, spec_name)
        previous = spec.status

        try:
            self._machine.transition(spec, target)
        except ValidationFailed as e:
            self._log("spec_transition_rejected", {
                "issue": issue,
                "spec": spec_name,
                "from": previous.value,
                "to": target.value,
                "reasons": e.reasons,
            }, level="warn")
            raise

        self._store.save_spec(spec)
        self._log("spec_status_changed", {
            "issue": issue,
            "spec": spec_name,
            "from": previous.value,
            "to": target.value,
            "review_round": spec.review_round,
        })
        return spec

    def create(
        self,
        issue: str,
        spec_name: str,
        title: str = "",
        dependencies: Optional[list[str]] = None,
    ) -> SpecRecord:
        """
        Create a pending spec in an existing issue.

        Raises:
            UsageError: If the name is not a slug, already exists, or a
                dependency does not name an existing spec of the issue.
            IssueNotFoundError: If the issue does not exist.
        """
        if not is_valid_slug(spec_name):
            raise UsageError(f"Spec name must be a kebab-case slug: {spec_name}")
        existing = {s.name for s in self._store.load_specs(issue)}
        if spec_name in existing:
            raise UsageError(f"Spec already exists: {issue}/{spec_name}")

        dependencies = list(dependencies or [])
        unknown = [d for d in dependencies if d not in existing]
        if unknown:
            raise UsageError(f"Unknown spec dependencies: {', '.join(unknown)}")

        spec = SpecRecord(
            issue=issue,
            name=spec_name,
            title=title or spec_name.replace("-", " ").capitalize(),
            status=SpecStatus.PENDING,
            created=today(),
            dependencies=dependencies,
            body="## Description\n\n\n## Acceptance Criteria\n\n",
        )
        self._store.save_spec(spec)
        self._log("spec_created", {"issue": issue, "spec": spec_name})
        return spec

    def list(self, issue: str) -> list[SpecRecord]:
        return self._store.load_specs(issue)
