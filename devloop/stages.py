"""
Stage transition engine for issues.

An issue's stage is a field of its record. Moving an issue validates the
target stage through the ValidatorChain and then rewrites the record with a
single atomic replace; a rejected move leaves the record untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from devloop.analysis import IssueAnalyzer
from devloop.errors import UsageError, ValidationFailed
from devloop.metadata import is_valid_slug
from devloop.models import Issue, IssueType, Stage, today
from devloop.validators import ValidatorChain

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger
    from devloop.metadata import MetadataStore


ISSUE_TEMPLATE = """## Description

{description}

## BDD Scenarios

<!-- Scenario: ...
     Given ...
     When ...
     Then ... -->

## Acceptance Criteria

"""


@dataclass
class MoveResult:
    """Outcome of a successful move."""
    issue: Issue
    previous: Stage

    @property
    def changed(self) -> bool:
        return self.previous != self.issue.stage


@dataclass
class StageListing:
    """Issues grouped by stage in canonical stage order."""
    sections: list[tuple[Stage, list[Issue]]]

    @property
    def issues(self) -> list[Issue]:
        return [issue for _, issues in self.sections for issue in issues]

    def to_summaries(self) -> list[dict]:
        return [issue.to_summary() for issue in self.issues]


class StageTransitionEngine:
    """
    Owns the issue stage graph.

    Any declared stage may be targeted from any other; the validator chain
    decides whether the issue is ready for it.
    """

    def __init__(
        self,
        store: MetadataStore,
        chain: Optional[ValidatorChain] = None,
        analyzer: Optional[IssueAnalyzer] = None,
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self._store = store
        self._chain = chain or ValidatorChain()
        self._analyzer = analyzer or IssueAnalyzer(store)
        self._logger = logger

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info",
    ) -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "stage_engine"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def move(self, name: str, target: str | Stage) -> MoveResult:
        """
        Move an issue to a target stage.

        Args:
            name: Issue slug.
            target: Stage name or Stage.

        Returns:
            MoveResult with the updated issue and its previous stage.

        Raises:
            InvalidStageError: If target is not a declared stage (checked
                before any record is read).
            IssueNotFoundError: If the issue does not exist.
            ValidationFailed: With every blocking reason; nothing is written.
            PersistenceError: If the record cannot be rewritten.
        """
        target_stage = target if isinstance(target, Stage) else Stage.parse(target)

        issue = self._store.load_issue(name)
        previous = issue.stage
        analysis = self._analyzer.analyze(issue)
        result = self._chain.validate(issue, analysis, target_stage)

        if not result.valid:
            self._log("move_rejected", {
                "issue": name,
                "from": previous.value,
                "to": target_stage.value,
                "reasons": result.missing,
            }, level="warn")
            raise ValidationFailed(
                f"Cannot move {name} to {target_stage.value}",
                result.missing,
            )

        issue.stage = target_stage
        self._store.save_issue(issue)
        self._log("issue_moved", {
            "issue": name,
            "from": previous.value,
            "to": target_stage.value,
        })
        return MoveResult(issue=issue, previous=previous)

    def list(self, stage_filter: Optional[str | Stage] = None) -> StageListing:
        """
        List issues grouped by stage.

        Sections follow the canonical stage order; within a stage, issues
        keep discovery order. Each name appears once.

        Raises:
            InvalidStageError: If stage_filter is not a declared stage.
        """
        wanted: Optional[Stage] = None
        if stage_filter is not None:
            wanted = stage_filter if isinstance(stage_filter, Stage) else Stage.parse(stage_filter)

        by_stage: dict[Stage, list[Issue]] = {stage: [] for stage in Stage}
        seen: set[str] = set()
        for issue in self._store.load_issues():
            if issue.name in seen:
                continue
            seen.add(issue.name)
            by_stage[issue.stage].append(issue)

        stages = [wanted] if wanted is not None else list(Stage)
        return StageListing(sections=[(stage, by_stage[stage]) for stage in stages])

    def create(
        self,
        name: str,
        issue_type: str | IssueType = IssueType.FEATURE,
        title: str = "",
        owner: Optional[str] = None,
        description: str = "",
    ) -> Issue:
        """
        Create an issue in the first stage.

        Raises:
            UsageError: If the name is not a slug, the type is unknown, or
                the issue already exists.
        """
        if not is_valid_slug(name):
            raise UsageError(f"Issue name must be a kebab-case slug: {name}")
        if self._store.issue_exists(name):
            raise UsageError(f"Issue already exists: {name}")
        kind = issue_type if isinstance(issue_type, IssueType) else IssueType.parse(issue_type)

        issue = Issue(
            name=name,
            stage=Stage.first(),
            type=kind,
            title=title or name.replace("-", " ").capitalize(),
            created=today(),
            owner=owner,
            body=ISSUE_TEMPLATE.format(description=description.strip()),
        )
        self._store.save_issue(issue)
        self._log("issue_created", {"issue": name, "type": kind.value})
        return issue
