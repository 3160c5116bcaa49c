"""Tests for the git client."""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from devloop.errors import VCSError
from devloop.tcr.vcs import GitClient, parse_porcelain_z


def _completed(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


class TestParsePorcelain:
    """Tests for parse_porcelain_z."""

    def test_statuses(self):
        """Modified, added, deleted and untracked paths are all changes."""
        output = " M src/a.ts\0A  src/b.ts\0 D src/c.ts\0?? src/new file.ts\0"
        assert parse_porcelain_z(output) == {
            "src/a.ts", "src/b.ts", "src/c.ts", "src/new file.ts",
        }

    def test_rename_reports_new_path(self):
        """The original path after a rename is skipped."""
        output = "R  src/new.ts\0src/old.ts\0 M src/x.ts\0"
        assert parse_porcelain_z(output) == {"src/new.ts", "src/x.ts"}

    def test_empty(self):
        assert parse_porcelain_z("") == set()


class TestGitClient:
    """Tests for GitClient with subprocess mocked."""

    def test_changed_files_includes_untracked(self, tmp_path: Path):
        with patch("devloop.tcr.vcs.subprocess.run", return_value=_completed("?? src/a.ts\0")) as run:
            assert GitClient(tmp_path).changed_files() == {"src/a.ts"}
        cmd = run.call_args.args[0]
        assert cmd[:4] == ["git", "status", "--porcelain", "-z"]
        assert "--untracked-files=all" in cmd
        assert run.call_args.kwargs["cwd"] == tmp_path

    def test_commit_sequence(self, tmp_path: Path):
        """commit stages everything, commits and returns HEAD."""
        with patch("devloop.tcr.vcs.subprocess.run", side_effect=[
            _completed(), _completed(), _completed("abc123\n"),
        ]) as run:
            assert GitClient(tmp_path).commit("WIP: step") == "abc123"
        commands = [c.args[0][1:] for c in run.call_args_list]
        assert commands == [["add", "-A"], ["commit", "-m", "WIP: step"], ["rev-parse", "HEAD"]]

    def test_failure_raises(self, tmp_path: Path):
        with patch("devloop.tcr.vcs.subprocess.run", return_value=_completed(returncode=128, stderr="not a git repository")):
            with pytest.raises(VCSError, match="not a git repository") as exc_info:
                GitClient(tmp_path).changed_files()
        assert exc_info.value.returncode == 128

    def test_git_missing(self, tmp_path: Path):
        with patch("devloop.tcr.vcs.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(VCSError, match="not found"):
                GitClient(tmp_path).changed_files()

    def test_timeout(self, tmp_path: Path):
        with patch("devloop.tcr.vcs.subprocess.run", side_effect=subprocess.TimeoutExpired("git", 60)):
            with pytest.raises(VCSError, match="timed out"):
                GitClient(tmp_path).commit("x")


@pytest.mark.git
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGitClientRepository:
    """Tests against a temporary git repository."""

    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        def git(*args):
            subprocess.run(["git", *args], cwd=tmp_path, check=True, capture_output=True)

        git("init", "-q")
        git("config", "user.email", "dev@example.com")
        git("config", "user.name", "Dev")
        (tmp_path / "README.md").write_text("hello\n")
        git("add", "-A")
        git("commit", "-q", "-m", "initial")
        return tmp_path

    def test_clean_tree(self, repo: Path):
        assert GitClient(repo).changed_files() == set()

    def test_untracked_and_commit(self, repo: Path):
        """Untracked files are changes until committed."""
        (repo / "src").mkdir()
        (repo / "src" / "a.ts").write_text("export {}\n")
        client = GitClient(repo)
        assert client.changed_files() == {"src/a.ts"}
        commit_id = client.commit("WIP: add a")
        assert len(commit_id) == 40
        assert client.changed_files() == set()
