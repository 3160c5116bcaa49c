"""Shared fixtures for devloop tests."""

from pathlib import Path
from typing import Optional

import pytest
from typer.testing import CliRunner

from devloop.config import DevloopConfig, clear_config_cache
from devloop.metadata import MetadataStore
from devloop.models import Issue, IssueType, SpecRecord, SpecStatus, Stage


FEATURE_BODY = """## Description

Capture microphone audio while a session is recording.

## BDD Scenarios

Scenario: start recording
  Given a granted microphone permission
  When the user presses record
  Then audio frames are buffered

## Acceptance Criteria

- Frames are buffered
"""


@pytest.fixture(autouse=True)
def _reset_config_cache():
    """The config cache must not leak between tests."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config(tmp_path: Path) -> DevloopConfig:
    """Default configuration rooted at a temporary project."""
    return DevloopConfig(repo_root=str(tmp_path))


@pytest.fixture
def store(config: DevloopConfig) -> MetadataStore:
    return MetadataStore(config)


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def make_issue(store: MetadataStore):
    """Factory writing an issue record (feature with scenarios by default)."""

    def _make(
        name: str,
        stage: Stage = Stage.BACKLOG,
        issue_type: IssueType = IssueType.FEATURE,
        body: str = FEATURE_BODY,
        owner: Optional[str] = None,
    ) -> Issue:
        issue = Issue(
            name=name,
            stage=stage,
            type=issue_type,
            title=name.replace("-", " ").capitalize(),
            created="2026-01-05",
            owner=owner,
            body=body,
        )
        store.save_issue(issue)
        return issue

    return _make


@pytest.fixture
def make_spec(store: MetadataStore):
    """Factory writing a spec record into an existing issue."""

    def _make(
        issue: str,
        name: str,
        status: SpecStatus = SpecStatus.PENDING,
        body: str = "## Description\n\nA spec.\n",
        review_round: int = 0,
    ) -> SpecRecord:
        spec = SpecRecord(
            issue=issue,
            name=name,
            status=status,
            created="2026-01-05",
            completed="2026-01-09" if status == SpecStatus.COMPLETED else None,
            review_round=review_round,
            body=body,
        )
        store.save_spec(spec)
        return spec

    return _make
