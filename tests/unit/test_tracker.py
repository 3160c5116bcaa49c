"""Tests for the issue tracker lookup."""

from unittest.mock import MagicMock

import pytest
import requests

from devloop.config import TrackerConfig
from devloop.errors import TrackerError
from devloop.tracker import LinearTracker, slugify


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def tracker_env(monkeypatch):
    monkeypatch.setenv("LINEAR_API_KEY", "lin_test")
    monkeypatch.setenv("LINEAR_TEAM_ID", "team-1")


def _tracker(session) -> LinearTracker:
    return LinearTracker(TrackerConfig(), session=session)


class TestSlugify:
    """Tests for title slugification."""

    @pytest.mark.parametrize("title,slug", [
        ("Docker Development Workflow", "docker-development-workflow"),
        ("  Fix: crash (empty list)!  ", "fix-crash-empty-list"),
        ("v2 API", "v2-api"),
    ])
    def test_slugify(self, title, slug):
        assert slugify(title) == slug


class TestResolveRemoteId:
    """Tests for LinearTracker.resolve_remote_id."""

    def test_identifier_lookup(self, tracker_env):
        """Identifiers are looked up directly."""
        session = MagicMock()
        session.post.return_value = _response(
            {"data": {"issue": {"id": "u1", "identifier": "HEY-12", "title": "Audio"}}}
        )
        assert _tracker(session).resolve_remote_id("hey-12") == "HEY-12"
        variables = session.post.call_args.kwargs["json"]["variables"]
        assert variables == {"id": "HEY-12"}
        assert session.post.call_args.kwargs["headers"]["Authorization"] == "lin_test"

    def test_slug_matches_title_across_pages(self, tracker_env):
        """Team issues are paged until a title matches."""
        session = MagicMock()
        session.post.side_effect = [
            _response({"data": {"issues": {
                "nodes": [{"id": "u1", "identifier": "HEY-1", "title": "Other thing"}],
                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
            }}}),
            _response({"data": {"issues": {
                "nodes": [{"id": "u2", "identifier": "HEY-2", "title": "Audio Capture"}],
                "pageInfo": {"hasNextPage": False, "endCursor": None},
            }}}),
        ]
        assert _tracker(session).resolve_remote_id("audio-capture") == "HEY-2"
        assert session.post.call_args.kwargs["json"]["variables"]["after"] == "c1"

    def test_not_found(self, tracker_env):
        """No matching title resolves to None."""
        session = MagicMock()
        session.post.return_value = _response({"data": {"issues": {
            "nodes": [], "pageInfo": {"hasNextPage": False},
        }}})
        assert _tracker(session).resolve_remote_id("audio-capture") is None

    def test_unknown_identifier(self, tracker_env):
        """A GraphQL not-found error resolves to None."""
        session = MagicMock()
        session.post.return_value = _response({"errors": [{"message": "Entity not found"}]})
        assert _tracker(session).resolve_remote_id("HEY-999") is None

    def test_missing_api_key(self, monkeypatch):
        """The API key is reported first, whatever else is missing."""
        monkeypatch.delenv("LINEAR_API_KEY", raising=False)
        monkeypatch.delenv("LINEAR_TEAM_ID", raising=False)
        session = MagicMock()
        with pytest.raises(TrackerError, match="LINEAR_API_KEY"):
            _tracker(session).resolve_remote_id("audio")
        session.post.assert_not_called()

    def test_missing_api_key_with_team(self, monkeypatch):
        monkeypatch.delenv("LINEAR_API_KEY", raising=False)
        monkeypatch.setenv("LINEAR_TEAM_ID", "team-1")
        with pytest.raises(TrackerError, match="LINEAR_API_KEY"):
            _tracker(MagicMock()).resolve_remote_id("audio")

    def test_missing_team(self, monkeypatch):
        monkeypatch.setenv("LINEAR_API_KEY", "lin_test")
        monkeypatch.delenv("LINEAR_TEAM_ID", raising=False)
        with pytest.raises(TrackerError, match="LINEAR_TEAM_ID"):
            _tracker(MagicMock()).resolve_remote_id("audio")

    def test_request_failure(self, tracker_env):
        """Network errors become TrackerError."""
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(TrackerError, match="request failed"):
            _tracker(session).resolve_remote_id("HEY-1")

    def test_graphql_error(self, tracker_env):
        session = MagicMock()
        session.post.return_value = _response({"errors": [{"message": "Rate limited"}]})
        with pytest.raises(TrackerError, match="Rate limited"):
            _tracker(session).resolve_remote_id("HEY-1")
