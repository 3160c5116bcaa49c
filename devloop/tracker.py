"""
Remote identifier lookup against the external issue tracker (Linear).

resolve_remote_id(slug) maps a local issue slug to the tracker identifier
(e.g. "docker-development-workflow" -> "HEY-42"). Identifiers that already
look like tracker ids are looked up directly; anything else is matched
against the slugified titles of the team's issues.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Optional

import requests

from devloop.errors import TrackerError

if TYPE_CHECKING:
    from devloop.config import TrackerConfig
    from devloop.logger import DevloopLogger


ISSUE_BY_ID_QUERY = """
query IssueById($id: String!) {
  issue(id: $id) { id identifier title }
}
"""

TEAM_ISSUES_QUERY = """
query TeamIssues($teamId: ID!, $after: String) {
  issues(filter: { team: { id: { eq: $teamId } } }, first: 100, after: $after) {
    nodes { id identifier title }
    pageInfo { hasNextPage endCursor }
  }
}
"""


def slugify(title: str) -> str:
    """Lowercase a title and collapse non-alphanumeric runs into dashes."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


class LinearTracker:
    """Minimal GraphQL client for issue identifier lookups."""

    def __init__(
        self,
        config: TrackerConfig,
        session: Optional[requests.Session] = None,
        logger: Optional[DevloopLogger] = None,
    ) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _api_key(self) -> str:
        api_key = self.config.get_api_key()
        if not api_key:
            raise TrackerError(f"{self.config.api_key_env_var} environment variable is not set")
        return api_key

    def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        api_key = self._api_key()

        try:
            response = self._session.post(
                self.config.api_url,
                json={"query": query, "variables": variables},
                headers={"Authorization": api_key, "Content-Type": "application/json"},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            self._log("remote_id_lookup_failed", {"error": str(e)}, level="error")
            raise TrackerError(f"Tracker request failed: {e}")
        except ValueError as e:
            raise TrackerError(f"Tracker returned invalid JSON: {e}")

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            # Unknown ids come back as GraphQL errors, not empty results
            if "not found" in messages.lower():
                return {}
            raise TrackerError(f"Tracker query failed: {messages}")
        return payload.get("data") or {}

    def is_identifier(self, value: str) -> bool:
        prefix = re.escape(self.config.identifier_prefix)
        return bool(re.match(rf"^{prefix}-\d+$", value, re.IGNORECASE))

    def lookup(self, slug: str) -> Optional[dict[str, str]]:
        """
        Find a tracker issue by identifier or slug.

        Returns:
            {"id", "identifier", "title"} or None if nothing matches.

        Raises:
            TrackerError: If credentials are missing or the request fails.
        """
        self._api_key()
        if self.is_identifier(slug):
            data = self._query(ISSUE_BY_ID_QUERY, {"id": slug.upper()})
            return data.get("issue")

        team_id = self.config.get_team_id()
        if not team_id:
            raise TrackerError(
                f"{self.config.team_id_env_var} is not set (check env or devloop.yaml)"
            )

        after: Optional[str] = None
        while True:
            data = self._query(TEAM_ISSUES_QUERY, {"teamId": team_id, "after": after})
            issues = data.get("issues") or {}
            for node in issues.get("nodes", []):
                title = node.get("title", "")
                if slugify(title) == slug or title.lower().replace(" ", "-") == slug:
                    return node
            page = issues.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                return None
            after = page.get("endCursor")

    def resolve_remote_id(self, slug: str) -> Optional[str]:
        """Tracker identifier for a slug, or None when not found."""
        node = self.lookup(slug)
        if node is None:
            self._log("remote_id_not_found", {"slug": slug})
            return None
        self._log("remote_id_resolved", {"slug": slug, "identifier": node.get("identifier")})
        return node.get("identifier")
