"""Tests for the spec status state machine."""

from itertools import product
from unittest.mock import MagicMock

import pytest

from devloop.errors import (
    InvalidStatusError,
    InvalidTransitionError,
    IssueNotFoundError,
    SpecNotFoundError,
    UsageError,
    ValidationFailed,
)
from devloop.logger import DevloopLogger
from devloop.models import SpecRecord, SpecStatus
from devloop.spec_status import (
    VALID_TRANSITIONS,
    SpecService,
    SpecStatusStateMachine,
    is_terminal_status,
    is_valid_transition,
    needs_review,
    parse_review,
)


def _spec(status: SpecStatus, review: str = "") -> SpecRecord:
    body = "## Description\n\nA spec.\n"
    if review:
        body += f"\n## Review\n\nVerdict: {review}\n"
    return SpecRecord(
        issue="audio",
        name="recorder",
        status=status,
        completed="2026-01-09" if status == SpecStatus.COMPLETED else None,
        body=body,
    )


@pytest.fixture
def machine() -> SpecStatusStateMachine:
    return SpecStatusStateMachine()


class TestTransitionTable:
    """Tests for the transition table helpers."""

    def test_table(self):
        """The table holds exactly the documented edges."""
        assert VALID_TRANSITIONS == {
            SpecStatus.PENDING: [SpecStatus.IN_PROGRESS],
            SpecStatus.IN_PROGRESS: [SpecStatus.PENDING, SpecStatus.IN_REVIEW],
            SpecStatus.IN_REVIEW: [SpecStatus.IN_PROGRESS, SpecStatus.COMPLETED],
            SpecStatus.COMPLETED: [SpecStatus.IN_REVIEW],
        }

    def test_terminal_and_review_flags(self):
        assert [s for s in SpecStatus if is_terminal_status(s)] == [SpecStatus.COMPLETED]
        assert [s for s in SpecStatus if needs_review(s)] == [SpecStatus.IN_REVIEW]

    @pytest.mark.parametrize("current,target", [
        (c, t) for c, t in product(SpecStatus, SpecStatus)
        if t not in VALID_TRANSITIONS[c]
    ])
    def test_edges_outside_table_rejected(self, machine, current, target):
        """Every edge outside the table fails and names the allowed edges."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.check(_spec(current), target)
        message = str(exc_info.value)
        for allowed in VALID_TRANSITIONS[current]:
            assert allowed.value in message
        assert exc_info.value.allowed == [s.value for s in VALID_TRANSITIONS[current]]
        assert is_valid_transition(current, target) is False


class TestReviewPreconditions:
    """Tests for the verdict-gated edges."""

    def test_needs_work_blocks_completed(self, machine):
        """in-review with NEEDS_WORK cannot complete."""
        with pytest.raises(ValidationFailed) as exc_info:
            machine.transition(_spec(SpecStatus.IN_REVIEW, "NEEDS_WORK"), SpecStatus.COMPLETED)
        assert "APPROVED" in exc_info.value.missing[0]

    def test_needs_work_allows_in_progress(self, machine):
        """in-review with NEEDS_WORK goes back to in-progress."""
        spec = machine.transition(_spec(SpecStatus.IN_REVIEW, "NEEDS_WORK"), SpecStatus.IN_PROGRESS)
        assert spec.status == SpecStatus.IN_PROGRESS

    def test_approved_completes(self, machine):
        """APPROVED completes and stamps the completed date."""
        spec = machine.transition(_spec(SpecStatus.IN_REVIEW, "APPROVED"), SpecStatus.COMPLETED)
        assert spec.status == SpecStatus.COMPLETED
        assert spec.completed is not None

    @pytest.mark.parametrize("verdict", ["", "approved", "APPROVED!", "LGTM", "NEEDS_WORK"])
    def test_completed_needs_exact_approved(self, machine, verdict):
        """Anything but exactly APPROVED (including no review) rejects completion."""
        with pytest.raises(ValidationFailed):
            machine.check(_spec(SpecStatus.IN_REVIEW, verdict), SpecStatus.COMPLETED)

    @pytest.mark.parametrize("verdict", ["", "needs work", "APPROVED"])
    def test_in_progress_needs_exact_needs_work(self, machine, verdict):
        """Anything but exactly NEEDS_WORK rejects going back to in-progress."""
        with pytest.raises(ValidationFailed):
            machine.check(_spec(SpecStatus.IN_REVIEW, verdict), SpecStatus.IN_PROGRESS)

    def test_missing_review_message(self, machine):
        """A missing review is named as such."""
        with pytest.raises(ValidationFailed, match="no review section"):
            machine.check(_spec(SpecStatus.IN_REVIEW), SpecStatus.COMPLETED)

    def test_rereview_has_no_precondition(self, machine):
        """completed -> in-review is always allowed."""
        spec = machine.transition(_spec(SpecStatus.COMPLETED), SpecStatus.IN_REVIEW)
        assert spec.status == SpecStatus.IN_REVIEW
        assert spec.completed is None

    def test_review_state_consistency(self, machine):
        """A NEEDS_WORK review cannot sit on a pending spec."""
        with pytest.raises(ValidationFailed, match="NEEDS_WORK"):
            machine.check(_spec(SpecStatus.IN_PROGRESS, "NEEDS_WORK"), SpecStatus.PENDING)

    def test_check_does_not_mutate(self, machine):
        spec = _spec(SpecStatus.IN_REVIEW, "NEEDS_WORK")
        with pytest.raises(ValidationFailed):
            machine.transition(spec, SpecStatus.COMPLETED)
        assert spec.status == SpecStatus.IN_REVIEW
        assert spec.review_round == 0


class TestDerivedFields:
    """Tests for review_round and completed bookkeeping."""

    def test_review_round_increments_on_each_review(self, machine):
        spec = _spec(SpecStatus.IN_PROGRESS)
        machine.transition(spec, SpecStatus.IN_REVIEW)
        spec.body += "\n## Review\n\nVerdict: NEEDS_WORK\n"
        machine.transition(spec, SpecStatus.IN_PROGRESS)
        machine.transition(spec, SpecStatus.IN_REVIEW)
        assert spec.review_round == 2


class TestParseReview:
    """Tests for review section parsing."""

    def test_no_review(self):
        assert parse_review("## Description\n") is None

    def test_latest_review_wins(self):
        body = (
            "## Review\n\nVerdict: NEEDS_WORK\n\n"
            "## Review Round 2\n\n**Verdict:** APPROVED\n"
        )
        assert parse_review(body).verdict == "APPROVED"

    def test_review_without_verdict(self):
        review = parse_review("## Review\n\nSome notes only.\n")
        assert review is not None
        assert review.verdict is None

    def test_section_ends_at_next_heading(self):
        review = parse_review("## Review\n\nok\n\n## Notes\n\nVerdict: APPROVED\n")
        assert review.verdict is None


class TestSpecService:
    """Tests for SpecService persistence."""

    def test_set_status_persists(self, store, make_issue, make_spec):
        """A successful transition is written back."""
        make_issue("audio")
        make_spec("audio", "recorder")
        logger = MagicMock(spec=DevloopLogger)
        service = SpecService(store, logger=logger)
        service.set_status("audio", "recorder", "in-progress")
        assert store.load_spec("audio", "recorder").status == SpecStatus.IN_PROGRESS
        assert logger.log.call_args.args[0] == "spec_status_changed"

    def test_rejected_transition_not_persisted(self, store, make_issue, make_spec):
        make_issue("audio")
        make_spec("audio", "recorder", status=SpecStatus.IN_REVIEW, body="## Review\n\nVerdict: NEEDS_WORK\n")
        with pytest.raises(ValidationFailed):
            SpecService(store).set_status("audio", "recorder", "completed")
        assert store.load_spec("audio", "recorder").status == SpecStatus.IN_REVIEW

    def test_invalid_status_name(self, store, make_issue, make_spec):
        make_issue("audio")
        make_spec("audio", "recorder")
        with pytest.raises(InvalidStatusError):
            SpecService(store).set_status("audio", "recorder", "shipped")

    def test_not_found(self, store, make_issue):
        make_issue("audio")
        with pytest.raises(SpecNotFoundError):
            SpecService(store).set_status("audio", "nope", "in-progress")
        with pytest.raises(IssueNotFoundError):
            SpecService(store).set_status("nope", "nope", "in-progress")

    def test_create(self, store, make_issue):
        """New specs are pending with round 0."""
        make_issue("audio")
        service = SpecService(store)
        service.create("audio", "permissions")
        spec = service.create("audio", "recorder", dependencies=["permissions"])
        assert spec.status == SpecStatus.PENDING
        assert spec.review_round == 0
        assert [s.name for s in service.list("audio")] == ["permissions", "recorder"]

    def test_create_unknown_dependency(self, store, make_issue):
        make_issue("audio")
        with pytest.raises(UsageError, match="dependencies"):
            SpecService(store).create("audio", "recorder", dependencies=["missing"])

    def test_create_duplicate(self, store, make_issue):
        make_issue("audio")
        service = SpecService(store)
        service.create("audio", "recorder")
        with pytest.raises(UsageError, match="already exists"):
            service.create("audio", "recorder")
