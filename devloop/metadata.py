"""
Record persistence for issues and specs.

Each record is a markdown document with a YAML front-matter header:

    ---
    name: parse-header
    stage: todo
    type: feature
    ---
    ## Description
    ...

Layout under <agile_dir>/issues/:
- <issue>/issue.md            issue record (stage lives in the header)
- <issue>/specs/<spec>.md     spec records belonging to the issue

Every write goes through an atomic replace, so a crash mid-write leaves
the previous version readable and never a half-written record.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import yaml

from devloop.errors import (
    IssueNotFoundError,
    PersistenceError,
    SpecNotFoundError,
    UsageError,
)
from devloop.models import Issue, SpecRecord
from devloop.utils.fs import (
    FileSystemError,
    file_exists,
    list_dirs,
    list_markdown,
    read_file,
    safe_write,
)

if TYPE_CHECKING:
    from devloop.config import DevloopConfig

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
ISSUE_FILENAME = "issue.md"
SPECS_DIRNAME = "specs"


def is_valid_slug(name: str) -> bool:
    """Check that a record name is a kebab-case slug."""
    return bool(SLUG_PATTERN.match(name or ""))


def parse_document(content: str, source: str = "<string>") -> tuple[dict[str, Any], str]:
    """
    Split a record into its header mapping and markdown body.

    A document without front matter has an empty header.

    Raises:
        PersistenceError: If the front matter is unterminated, is not valid
            YAML, or does not hold a mapping.
    """
    if not content.startswith("---"):
        return {}, content

    lines = content.splitlines(keepends=True)
    end_index = None
    for index in range(1, len(lines)):
        if lines[index].rstrip("\r\n") == "---":
            end_index = index
            break
    if end_index is None:
        raise PersistenceError(f"Unterminated metadata header in {source}")

    header_text = "".join(lines[1:end_index])
    body = "".join(lines[end_index + 1:])
    if body.startswith("\n"):
        body = body[1:]

    try:
        header = yaml.safe_load(header_text) if header_text.strip() else {}
    except yaml.YAMLError as e:
        raise PersistenceError(f"Corrupt metadata header in {source}: {e}")

    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise PersistenceError(f"Metadata header in {source} is not a mapping")

    return header, body


def render_document(header: dict[str, Any], body: str) -> str:
    """Render a header mapping and body back into a record document."""
    header_text = yaml.safe_dump(header, sort_keys=False, default_flow_style=False)
    return f"---\n{header_text}---\n\n{body}"


class MetadataStore:
    """
    Reads and writes issue and spec records.

    The store is the only component that touches record files; everything
    above it works with Issue and SpecRecord values.
    """

    def __init__(self, config: DevloopConfig) -> None:
        self._config = config
        self._root = config.issues_path

    @property
    def root(self) -> Path:
        return self._root

    def issue_dir(self, name: str) -> Path:
        return self._root / name

    def issue_path(self, name: str) -> Path:
        return self.issue_dir(name) / ISSUE_FILENAME

    def specs_dir(self, issue: str) -> Path:
        return self.issue_dir(issue) / SPECS_DIRNAME

    def spec_path(self, issue: str, spec: str) -> Path:
        return self.specs_dir(issue) / f"{spec}.md"

    def _read(self, path: Path) -> tuple[dict[str, Any], str]:
        try:
            content = read_file(path)
        except FileSystemError as e:
            raise PersistenceError(str(e))
        return parse_document(content, source=str(path))

    def _write(self, path: Path, header: dict[str, Any], body: str) -> None:
        try:
            safe_write(path, render_document(header, body))
        except FileSystemError as e:
            raise PersistenceError(str(e))

    # Issue Operations

    def issue_exists(self, name: str) -> bool:
        return is_valid_slug(name) and file_exists(self.issue_path(name))

    def load_issue(self, name: str) -> Issue:
        """
        Load an issue record by name.

        Raises:
            IssueNotFoundError: If no record exists under that name.
            PersistenceError: If the record cannot be read or is corrupt.
        """
        if not self.issue_exists(name):
            raise IssueNotFoundError(name)

        path = self.issue_path(name)
        header, body = self._read(path)
        # The directory name is the authoritative key
        header["name"] = name
        try:
            return Issue.from_header(header, body)
        except KeyError as e:
            raise PersistenceError(f"Missing field {e} in {path}")
        except (TypeError, ValueError, UsageError) as e:
            raise PersistenceError(f"Invalid metadata in {path}: {e}")

    def save_issue(self, issue: Issue) -> None:
        """
        Write an issue record atomically.

        Raises:
            PersistenceError: If the write fails.
        """
        self._write(self.issue_path(issue.name), issue.header(), issue.body)

    def issue_names(self) -> list[str]:
        """Names of every issue directory holding a record, in discovery order."""
        return [
            d.name for d in list_dirs(self._root)
            if is_valid_slug(d.name) and file_exists(d / ISSUE_FILENAME)
        ]

    def load_issues(self) -> list[Issue]:
        return [self.load_issue(name) for name in self.issue_names()]

    # Spec Operations

    def spec_exists(self, issue: str, spec: str) -> bool:
        return is_valid_slug(spec) and file_exists(self.spec_path(issue, spec))

    def load_spec(self, issue: str, spec: str) -> SpecRecord:
        """
        Load a spec record.

        Raises:
            IssueNotFoundError: If the issue does not exist.
            SpecNotFoundError: If the spec does not exist.
        """
        if not self.issue_exists(issue):
            raise IssueNotFoundError(issue)
        if not self.spec_exists(issue, spec):
            raise SpecNotFoundError(issue, spec)

        path = self.spec_path(issue, spec)
        header, body = self._read(path)
        header["name"] = spec
        try:
            return SpecRecord.from_header(issue, header, body)
        except (TypeError, ValueError, UsageError) as e:
            raise PersistenceError(f"Invalid metadata in {path}: {e}")

    def save_spec(self, spec: SpecRecord) -> None:
        self._write(self.spec_path(spec.issue, spec.name), spec.header(), spec.body)

    def load_specs(self, issue: str) -> list[SpecRecord]:
        """All specs of an issue, sorted by name."""
        if not self.issue_exists(issue):
            raise IssueNotFoundError(issue)
        return [
            self.load_spec(issue, path.stem)
            for path in list_markdown(self.specs_dir(issue))
            if is_valid_slug(path.stem)
        ]


def find_section(body: str, heading: str) -> Optional[str]:
    """
    Return the text under a markdown heading (any level), or None.

    The section runs until the next heading of the same or higher level.
    Matching is case-insensitive on the heading text.
    """
    lines = body.splitlines()
    wanted = heading.strip().lower()
    for index, line in enumerate(lines):
        match = re.match(r"^(#{1,6})\s+(.*?)\s*#*\s*$", line)
        if not match or match.group(2).strip().lower() != wanted:
            continue
        level = len(match.group(1))
        collected = []
        for following in lines[index + 1:]:
            next_heading = re.match(r"^(#{1,6})\s+", following)
            if next_heading and len(next_heading.group(1)) <= level:
                break
            collected.append(following)
        return "\n".join(collected).strip()
    return None
