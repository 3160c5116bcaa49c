"""
Stage transition validators.

A validator is a pure rule: it declares the target stages it applies to
and checks an issue (plus its precomputed analysis) against one of them.
Business-rule failures are returned as ValidationResult values, never raised.

The chain runs every applicable validator without short-circuiting so a
single call reports every blocking reason at once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from devloop.analysis import IssueAnalysis
from devloop.models import Issue, IssueType, Stage, ValidationResult


class Validator(ABC):
    """Base class for stage validators."""

    name: str = "validator"
    applies_to: frozenset[Stage] = frozenset()

    def applies(self, target: Stage) -> bool:
        return target in self.applies_to

    @abstractmethod
    def validate(
        self,
        issue: Issue,
        analysis: IssueAnalysis,
        target: Stage,
    ) -> ValidationResult:
        """Check the issue against the target stage."""
        raise NotImplementedError


class DescriptionValidator(Validator):
    """Work cannot start without a written description."""

    name = "description"
    applies_to = frozenset({Stage.IN_PROGRESS})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if analysis.has_description:
            return ValidationResult.ok()
        return ValidationResult.fail(
            f"{issue.name}: Description section is empty (required for {target.value})"
        )


class ScenariosValidator(Validator):
    """
    Feature issues need BDD scenarios before entering todo.

    Bugs and tasks are exempt.
    """

    name = "bdd-scenarios"
    applies_to = frozenset({Stage.TODO})
    issue_types = frozenset({IssueType.FEATURE})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if issue.type not in self.issue_types:
            return ValidationResult.ok()
        if analysis.has_bdd_scenarios:
            return ValidationResult.ok()
        return ValidationResult.fail(
            f"{issue.name}: feature issues need BDD scenarios defined before moving to {target.value}"
        )


class OwnerValidator(Validator):
    """Someone must own an issue that is being worked on."""

    name = "owner"
    applies_to = frozenset({Stage.IN_PROGRESS})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if issue.owner and str(issue.owner).strip():
            return ValidationResult.ok()
        return ValidationResult.fail(f"{issue.name}: no owner assigned")


class SpecsDefinedValidator(Validator):
    """Implementation starts from at least one spec."""

    name = "specs-defined"
    applies_to = frozenset({Stage.IN_PROGRESS})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if analysis.spec_count > 0:
            return ValidationResult.ok()
        return ValidationResult.fail(f"{issue.name}: no specs defined")


class SpecsCompletedValidator(Validator):
    """Review and completion require every spec to be completed."""

    name = "specs-completed"
    applies_to = frozenset({Stage.IN_REVIEW, Stage.DONE})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if analysis.spec_count == 0:
            return ValidationResult.fail(f"{issue.name}: no specs defined")
        if not analysis.incomplete_specs:
            return ValidationResult.ok()
        return ValidationResult.fail(*(
            f"{issue.name}: spec '{spec}' is not completed"
            for spec in analysis.incomplete_specs
        ))


class SpecsApprovedValidator(Validator):
    """Done requires an APPROVED review on every spec."""

    name = "specs-approved"
    applies_to = frozenset({Stage.DONE})

    def validate(self, issue: Issue, analysis: IssueAnalysis, target: Stage) -> ValidationResult:
        if not analysis.unapproved_specs:
            return ValidationResult.ok()
        return ValidationResult.fail(*(
            f"{issue.name}: spec '{spec}' has no APPROVED review"
            for spec in analysis.unapproved_specs
        ))


def default_validators() -> list[Validator]:
    """The validators used unless a caller injects its own list."""
    return [
        DescriptionValidator(),
        ScenariosValidator(),
        OwnerValidator(),
        SpecsDefinedValidator(),
        SpecsCompletedValidator(),
        SpecsApprovedValidator(),
    ]


class ValidatorChain:
    """An ordered set of validators evaluated together."""

    def __init__(self, validators: Optional[Iterable[Validator]] = None) -> None:
        self._validators = list(validators) if validators is not None else default_validators()

    @property
    def validators(self) -> list[Validator]:
        return list(self._validators)

    def applicable(self, target: Stage) -> list[Validator]:
        return [v for v in self._validators if v.applies(target)]

    def validate(
        self,
        issue: Issue,
        analysis: IssueAnalysis,
        target: Stage,
    ) -> ValidationResult:
        """
        Run every validator that applies to the target stage.

        Reasons are aggregated in validator order; the result is valid only
        when every run validator is valid.
        """
        missing: list[str] = []
        valid = True
        for validator in self.applicable(target):
            result = validator.validate(issue, analysis, target)
            if not result.valid:
                valid = False
                missing.extend(result.missing or [f"{validator.name} check failed"])
        return ValidationResult(valid=valid, missing=missing)
