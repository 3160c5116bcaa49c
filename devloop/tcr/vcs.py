"""
Git operations used by the TCR check.

Only two operations are needed: list the paths that differ from HEAD
(including untracked files) and commit everything in the working tree.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from devloop.errors import VCSError

if TYPE_CHECKING:
    from devloop.logger import DevloopLogger


def parse_porcelain_z(output: str) -> set[str]:
    """
    Parse ``git status --porcelain -z`` output into a set of paths.

    Renames and copies report the new path; the original path that follows
    them in the stream is skipped.
    """
    paths: set[str] = set()
    tokens = output.split("\0")
    index = 0
    while index < len(tokens):
        entry = tokens[index]
        index += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        paths.add(path)
        if "R" in status or "C" in status:
            index += 1
    return paths


class GitClient:
    """Thin subprocess wrapper around git."""

    def __init__(
        self,
        repo_root: str | Path,
        logger: Optional[DevloopLogger] = None,
        timeout_seconds: int = 60,
    ) -> None:
        self.repo_root = Path(repo_root)
        self._logger = logger
        self.timeout_seconds = timeout_seconds

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _run(self, *args: str) -> str:
        cmd = ["git", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError:
            raise VCSError("git executable not found")
        except subprocess.TimeoutExpired as e:
            raise VCSError(f"git {args[0]} timed out after {e.timeout} seconds")

        if result.returncode != 0:
            self._log("git_error", {
                "command": " ".join(cmd),
                "returncode": result.returncode,
                "stderr": result.stderr[:500],
            }, level="error")
            raise VCSError(
                f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}",
                stderr=result.stderr,
                returncode=result.returncode,
            )
        return result.stdout

    def changed_files(self) -> set[str]:
        """Paths that differ from the last commit, untracked files included."""
        output = self._run("status", "--porcelain", "-z", "--untracked-files=all")
        return parse_porcelain_z(output)

    def commit(self, message: str) -> str:
        """
        Stage everything and commit.

        Returns:
            The new commit hash.

        Raises:
            VCSError: If staging, committing or reading HEAD fails.
        """
        self._run("add", "-A")
        self._run("commit", "-m", message)
        commit_id = self._run("rev-parse", "HEAD").strip()
        self._log("git_commit", {"commit": commit_id, "message": message})
        return commit_id
