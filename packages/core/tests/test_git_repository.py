"""Tests for the git-backed VersionControl implementation."""

import subprocess
from datetime import datetime, timezone

import pytest

from mergegate_core.errors import VcsError
from mergegate_core.vcs.git import GitRepository


def _proc(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def run(mocker):
    return mocker.patch("mergegate_core.vcs.git.subprocess.run", return_value=_proc())


@pytest.fixture
def repo(tmp_path):
    return GitRepository(tmp_path)


def _commands(run):
    return [c.args[0] for c in run.call_args_list]


def test_failed_command_raises_vcs_error(run, repo):
    run.return_value = _proc(returncode=128, stderr="fatal: bad revision 'nope'")
    with pytest.raises(VcsError, match="bad revision") as excinfo:
        repo.rev_parse("nope")
    assert excinfo.value.command[:2] == ["git", "rev-parse"]
    assert excinfo.value.stderr == "fatal: bad revision 'nope'"


def test_missing_git_executable(run, repo):
    run.side_effect = FileNotFoundError()
    with pytest.raises(VcsError, match="not found"):
        repo.current_branch()


def test_timeout_raises_vcs_error(run, repo):
    run.side_effect = subprocess.TimeoutExpired(cmd="git push", timeout=300)
    with pytest.raises(VcsError, match="timed out"):
        repo.push("feature")


def test_resolve_ref_returns_none_for_missing_ref(run, repo):
    run.return_value = _proc(returncode=1)
    assert repo.resolve_ref("refs/mergegate/backup/x") is None


def test_changed_paths(run, repo):
    run.return_value = _proc("src/app.py\n\nsrc/util.py\n")
    assert repo.changed_paths("base", "head") == ["src/app.py", "src/util.py"]
    assert _commands(run)[-1] == ["git", "diff", "--name-only", "base..head"]


def test_line_modified_at_uses_latest_committer_time(run, repo):
    run.return_value = _proc(
        "abc 1 1 2\ncommitter-time 1704110400\nsummary x\n\tline\ndef 2 2\ncommitter-time 1704114000\n\tline\n"
    )
    modified = repo.line_modified_at("src/app.py", 1, 2, "HEAD")
    assert modified == datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)
    assert _commands(run)[-1] == ["git", "blame", "--porcelain", "-L", "1,2", "HEAD", "--", "src/app.py"]


def test_line_modified_at_returns_none_when_lines_are_gone(run, repo):
    run.return_value = _proc(returncode=128, stderr="fatal: file src/app.py has only 3 lines")
    assert repo.line_modified_at("src/app.py", 10, 12, "HEAD") is None


def test_commit_stages_only_given_paths(run, repo):
    run.return_value = _proc("deadbeef\n")
    assert repo.commit("fix(src): x", ["src/app.py"]) == "deadbeef"
    assert _commands(run)[:2] == [
        ["git", "add", "-A", "--", "src/app.py"],
        ["git", "commit", "-m", "fix(src): x"],
    ]


def test_commit_without_paths_refused(run, repo):
    with pytest.raises(VcsError):
        repo.commit("empty", [])
    run.assert_not_called()


def test_force_push_uses_lease(run, repo):
    repo.push("feature", force=True)
    assert _commands(run)[-1] == ["git", "push", "--force-with-lease", "origin", "HEAD:refs/heads/feature"]


def test_restore_paths_removes_untracked_new_file(run, repo, tmp_path):
    (tmp_path / "new.py").write_text("x = 1\n")
    run.side_effect = lambda cmd, **kw: _proc(returncode=0 if "src/app.py" in cmd[-1] else 128)

    repo.restore_paths(["src/app.py", "new.py"])

    assert ["git", "checkout", "HEAD", "--", "src/app.py"] in _commands(run)
    assert not (tmp_path / "new.py").exists()


def test_is_dirty(run, repo):
    run.return_value = _proc(" M src/app.py\n")
    assert repo.is_dirty() is True
    run.return_value = _proc("")
    assert repo.is_dirty() is False
