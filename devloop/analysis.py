"""
Content analysis for issue records.

The analyzer reads an issue body (and its specs) once per evaluation and
produces an immutable IssueAnalysis. Validators only look at the analysis;
they never parse markdown themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from devloop.metadata import find_section
from devloop.models import Issue, SpecStatus
from devloop.spec_status import parse_review

if TYPE_CHECKING:
    from devloop.metadata import MetadataStore

SCENARIO_HEADINGS = ("BDD Scenarios", "Scenarios", "Behavior", "Behaviour")
SCENARIO_LINE = re.compile(r"^\s*(?:[-*]\s*)?\**\s*Scenario(?: Outline)?\s*:", re.IGNORECASE | re.MULTILINE)
GHERKIN_STEP = re.compile(r"^\s*(?:[-*]\s*)?\**\s*(Given|When|Then)\b", re.IGNORECASE | re.MULTILINE)
HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
PLACEHOLDERS = {"tbd", "todo", "n/a", "none", "-", "_tbd_", "_todo_"}


def _meaningful(text: Optional[str]) -> str:
    """Strip comments and placeholder text from a section."""
    if not text:
        return ""
    cleaned = HTML_COMMENT.sub("", text).strip()
    if cleaned.lower() in PLACEHOLDERS:
        return ""
    return cleaned


def count_scenarios(body: str) -> int:
    """
    Count behavioral scenarios in an issue body.

    Scenarios are read from a scenarios section when one exists, else from
    the whole body. A section with Given/When/Then steps but no explicit
    "Scenario:" line counts as one scenario.
    """
    section = None
    for heading in SCENARIO_HEADINGS:
        section = find_section(body, heading)
        if section is not None:
            break
    text = _meaningful(section if section is not None else body)
    if not text:
        return 0

    scenarios = len(SCENARIO_LINE.findall(text))
    if scenarios:
        return scenarios

    steps = {match.lower() for match in GHERKIN_STEP.findall(text)}
    if section is not None and {"given", "then"} <= steps:
        return 1
    return 0


def _is_approved(body: str) -> bool:
    review = parse_review(body)
    return review is not None and review.is_approved


@dataclass(frozen=True)
class IssueAnalysis:
    """Read-only summary of an issue's content."""
    has_description: bool = False
    scenario_count: int = 0
    has_acceptance_criteria: bool = False
    spec_names: tuple[str, ...] = ()
    incomplete_specs: tuple[str, ...] = ()
    unapproved_specs: tuple[str, ...] = ()

    @property
    def has_bdd_scenarios(self) -> bool:
        return self.scenario_count > 0

    @property
    def spec_count(self) -> int:
        return len(self.spec_names)


class IssueAnalyzer:
    """Builds IssueAnalysis values from records held by a MetadataStore."""

    def __init__(self, store: Optional[MetadataStore] = None) -> None:
        self.store = store

    def analyze(self, issue: Issue) -> IssueAnalysis:
        body = issue.body
        specs = []
        if self.store is not None and self.store.issue_exists(issue.name):
            specs = self.store.load_specs(issue.name)

        incomplete = tuple(s.name for s in specs if s.status != SpecStatus.COMPLETED)
        unapproved = tuple(s.name for s in specs if not _is_approved(s.body))

        return IssueAnalysis(
            has_description=bool(_meaningful(find_section(body, "Description"))),
            scenario_count=count_scenarios(body),
            has_acceptance_criteria=bool(_meaningful(find_section(body, "Acceptance Criteria"))),
            spec_names=tuple(s.name for s in specs),
            incomplete_specs=incomplete,
            unapproved_specs=unapproved,
        )
