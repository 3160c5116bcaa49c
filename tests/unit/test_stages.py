"""Tests for the stage transition engine."""

import json
from unittest.mock import MagicMock

import pytest

from devloop.errors import InvalidStageError, IssueNotFoundError, UsageError, ValidationFailed
from devloop.logger import DevloopLogger
from devloop.metadata import MetadataStore
from devloop.models import IssueType, SpecStatus, Stage
from devloop.stages import StageTransitionEngine


NO_SCENARIOS_BODY = """## Description

The device list crashes when empty.

## BDD Scenarios

<!-- Scenario: ... -->

## Acceptance Criteria

"""


@pytest.fixture
def engine(store: MetadataStore) -> StageTransitionEngine:
    return StageTransitionEngine(store)


class TestMove:
    """Tests for StageTransitionEngine.move."""

    def test_feature_without_scenarios_rejected(self, engine, store, make_issue):
        """A feature with no scenarios cannot enter todo."""
        make_issue("foo", body=NO_SCENARIOS_BODY)
        with pytest.raises(ValidationFailed) as exc_info:
            engine.move("foo", "todo")
        assert any("BDD scenarios" in r for r in exc_info.value.missing)
        assert store.load_issue("foo").stage == Stage.BACKLOG

    def test_bug_with_same_content_moves(self, engine, store, make_issue):
        """A bug with identical content enters todo."""
        make_issue("bar", issue_type=IssueType.BUG, body=NO_SCENARIOS_BODY)
        result = engine.move("bar", "todo")
        assert result.previous == Stage.BACKLOG
        assert result.issue.stage == Stage.TODO
        assert store.load_issue("bar").stage == Stage.TODO

    def test_bug_created_from_template_moves_to_todo(self, engine, store):
        """A freshly created bug with an empty template enters todo."""
        engine.create("bar", issue_type=IssueType.BUG)
        result = engine.move("bar", "todo")
        assert result.issue.stage == Stage.TODO
        assert store.load_issue("bar").stage == Stage.TODO

    def test_feature_created_from_template_needs_scenarios(self, engine):
        """The template scenarios placeholder does not count as a scenario."""
        engine.create("foo")
        with pytest.raises(ValidationFailed) as exc_info:
            engine.move("foo", "todo")
        assert len(exc_info.value.missing) == 1
        assert "BDD scenarios" in exc_info.value.missing[0]

    def test_moved_issue_only_listed_in_target(self, engine, make_issue):
        """After a move the issue appears under the target stage only."""
        make_issue("foo")
        engine.move("foo", "todo")
        sections = dict(engine.list().sections)
        assert [i.name for i in sections[Stage.TODO]] == ["foo"]
        for stage, issues in sections.items():
            if stage != Stage.TODO:
                assert "foo" not in [i.name for i in issues]

    def test_rejected_move_writes_nothing(self, engine, store, make_issue):
        """A rejected move leaves the record byte-for-byte unchanged."""
        make_issue("foo", body=NO_SCENARIOS_BODY)
        before = store.issue_path("foo").read_text()
        with pytest.raises(ValidationFailed):
            engine.move("foo", "in-progress")
        assert store.issue_path("foo").read_text() == before

    def test_all_reasons_reported(self, engine, make_issue):
        """Every blocker for in-progress is reported at once."""
        make_issue("foo", body="## Description\n\n\n")
        with pytest.raises(ValidationFailed) as exc_info:
            engine.move("foo", "in-progress")
        reasons = exc_info.value.missing
        assert any("Description" in r for r in reasons)
        assert any("owner" in r for r in reasons)
        assert any("no specs" in r for r in reasons)

    def test_in_progress_with_owner_and_spec(self, engine, make_issue, make_spec):
        """A described, owned issue with a spec can start."""
        make_issue("foo", stage=Stage.TODO, owner="sam")
        make_spec("foo", "recorder")
        assert engine.move("foo", Stage.IN_PROGRESS).issue.stage == Stage.IN_PROGRESS

    def test_done_requires_approved_completed_specs(self, engine, make_issue, make_spec):
        """Done needs every spec completed and approved."""
        make_issue("foo", stage=Stage.IN_REVIEW, owner="sam")
        make_spec("foo", "recorder", status=SpecStatus.COMPLETED)
        with pytest.raises(ValidationFailed) as exc_info:
            engine.move("foo", "done")
        assert exc_info.value.missing == ["foo: spec 'recorder' has no APPROVED review"]

    def test_invalid_stage_checked_before_lookup(self, engine):
        """An invalid stage is reported even for an unknown issue."""
        with pytest.raises(InvalidStageError):
            engine.move("does-not-exist", "shipping")

    def test_unknown_issue(self, engine):
        with pytest.raises(IssueNotFoundError):
            engine.move("does-not-exist", "todo")

    def test_move_to_same_stage(self, engine, make_issue):
        """Re-validating the current stage is allowed and reports no change."""
        make_issue("foo")
        assert not engine.move("foo", "backlog").changed

    def test_move_logs(self, store, make_issue):
        """Moves and rejections are logged."""
        logger = MagicMock(spec=DevloopLogger)
        engine = StageTransitionEngine(store, logger=logger)
        make_issue("foo", body=NO_SCENARIOS_BODY)
        with pytest.raises(ValidationFailed):
            engine.move("foo", "todo")
        engine.move("foo", "backlog")
        events = [c.args[0] for c in logger.log.call_args_list]
        assert events == ["move_rejected", "issue_moved"]


class TestList:
    """Tests for StageTransitionEngine.list."""

    def test_sections_in_canonical_order(self, engine, make_issue):
        """Every stage gets a section, in lifecycle order."""
        make_issue("b", stage=Stage.DONE)
        make_issue("a", stage=Stage.TODO)
        listing = engine.list()
        assert [stage for stage, _ in listing.sections] == list(Stage)
        assert [i.name for i in listing.issues] == ["a", "b"]

    def test_filter(self, engine, make_issue):
        make_issue("a", stage=Stage.TODO)
        make_issue("b", stage=Stage.DONE)
        listing = engine.list("todo")
        assert [stage for stage, _ in listing.sections] == [Stage.TODO]
        assert [i.name for i in listing.issues] == ["a"]

    def test_invalid_filter(self, engine):
        with pytest.raises(InvalidStageError):
            engine.list("shipping")

    def test_idempotent(self, engine, make_issue):
        """Listing twice without mutation gives identical results."""
        make_issue("a", stage=Stage.TODO)
        make_issue("b")
        first = json.dumps(engine.list().to_summaries())
        assert json.dumps(engine.list().to_summaries()) == first


class TestCreate:
    """Tests for StageTransitionEngine.create."""

    def test_creates_in_backlog(self, engine, store):
        """New issues land in backlog with the template body."""
        issue = engine.create("audio-capture", issue_type="bug", title="Audio", owner="sam")
        loaded = store.load_issue("audio-capture")
        assert loaded.stage == Stage.BACKLOG
        assert loaded.type == IssueType.BUG
        assert loaded.created == issue.created
        assert "## BDD Scenarios" in loaded.body

    def test_default_title(self, engine):
        assert engine.create("audio-capture").title == "Audio capture"

    def test_duplicate(self, engine):
        engine.create("audio-capture")
        with pytest.raises(UsageError, match="already exists"):
            engine.create("audio-capture")

    def test_invalid_name(self, engine):
        with pytest.raises(UsageError, match="slug"):
            engine.create("Audio Capture")

    def test_created_feature_needs_content_for_todo(self, engine):
        """The template alone does not satisfy the todo rules."""
        engine.create("audio-capture")
        with pytest.raises(ValidationFailed) as exc_info:
            engine.move("audio-capture", "todo")
        assert len(exc_info.value.missing) == 2
