from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from actuarius.process import (
    FakeProcessRunner,
    ProcessResult,
    ProcessTimeoutError,
    ProcessUnavailableError,
)
from actuarius.workspace import (
    GitWorkspace,
    GitWorkspaceError,
    GitWorkspaceErrorCode,
    RepoIdentity,
    build_checkout_path,
)
from actuarius.workspace.git import parse_remote_heads
from gitutil import commit, git, publish, remote_template, requires_git, seed_repo


def _ok(stdout: str = "") -> ProcessResult:
    return ProcessResult(args=("git",), returncode=0, stdout=stdout, stderr="")


def _workspace(tmp_path: Path, runner=None) -> GitWorkspace:
    return GitWorkspace(
        tmp_path / "repos",
        runner=runner,
        git_timeout=30,
        remote_url_template=remote_template(tmp_path),
    )


def test_checkout_path_is_sanitized(tmp_path: Path) -> None:
    path = build_checkout_path(tmp_path, "My Org", "Repo:Name")

    assert path == tmp_path / "my_org" / "repo_name"


def test_parse_remote_heads_ignores_noise() -> None:
    output = "abc123\trefs/heads/main\n" "def456\trefs/heads/master\n" "garbage line\n"

    assert parse_remote_heads(output) == {"main", "master"}


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        ("acme/widget", "acme/widget"),
        ("Acme/Widget.git", "acme/widget"),
        ("acme/widget/", "acme/widget"),
        ("https://github.com/Acme/Widget", "acme/widget"),
        ("https://github.com/acme/widget.git", "acme/widget"),
        ("https://github.com/acme/widget/tree/main", "acme/widget"),
    ],
)
def test_repo_identity_parse(reference: str, expected: str) -> None:
    identity = RepoIdentity.parse(reference)

    assert identity is not None
    assert identity.full_name == expected


@pytest.mark.parametrize("reference", ["", "widget", "https://gitlab.com/acme/widget", "a/b/c"])
def test_repo_identity_parse_rejects(reference: str) -> None:
    assert RepoIdentity.parse(reference) is None


def test_repo_identity_keeps_display_case() -> None:
    identity = RepoIdentity(owner="Acme", repo="Widget")

    assert str(identity) == "Acme/Widget"
    assert identity.full_name == "acme/widget"


@requires_git
def test_sync_main_only_remote_creates_local_master(tmp_path: Path) -> None:
    work = seed_repo(tmp_path, "acme", "widget", "main")
    publish(tmp_path, work, "acme", "widget")
    expected = git("rev-parse", "HEAD", cwd=work)

    path = asyncio.run(_workspace(tmp_path).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert path == tmp_path / "repos" / "acme" / "widget"
    assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=path) == "master"
    assert git("rev-parse", "master", cwd=path) == expected


@requires_git
def test_sync_prefers_master_over_main(tmp_path: Path) -> None:
    work = seed_repo(tmp_path, "acme", "widget", "main")
    master_sha = git("rev-parse", "HEAD", cwd=work)
    git("branch", "master", cwd=work)
    commit(work, "later.txt", "only on main\n")
    publish(tmp_path, work, "acme", "widget")

    path = asyncio.run(_workspace(tmp_path).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert git("rev-parse", "master", cwd=path) == master_sha
    assert not (path / "later.txt").exists()


@requires_git
def test_sync_without_default_branch_is_master_missing(tmp_path: Path) -> None:
    work = seed_repo(tmp_path, "acme", "widget", "develop")
    publish(tmp_path, work, "acme", "widget")

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert excinfo.value.code is GitWorkspaceErrorCode.MASTER_BRANCH_MISSING


@requires_git
def test_resync_picks_up_new_remote_commits(tmp_path: Path) -> None:
    work = seed_repo(tmp_path, "acme", "widget", "master")
    bare = publish(tmp_path, work, "acme", "widget")
    workspace = _workspace(tmp_path)
    identity = RepoIdentity(owner="acme", repo="widget")

    path = asyncio.run(workspace.ensure_checkout(identity))
    latest = commit(work, "feature.txt", "new\n")
    git("push", "-q", str(bare), "master", cwd=work)
    asyncio.run(workspace.ensure_checkout(identity))

    assert git("rev-parse", "master", cwd=path) == latest
    assert (path / "feature.txt").exists()


@requires_git
def test_clone_failure_leaves_no_partial_checkout(tmp_path: Path) -> None:
    identity = RepoIdentity(owner="acme", repo="missing")

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path).ensure_checkout(identity))

    assert excinfo.value.code is GitWorkspaceErrorCode.CLONE_FAILED
    assert not (tmp_path / "repos" / "acme" / "missing" / ".git").exists()


def _existing_checkout(tmp_path: Path) -> Path:
    path = tmp_path / "repos" / "acme" / "widget"
    (path / ".git").mkdir(parents=True)
    return path


def test_sync_uses_structured_ls_remote_result(tmp_path: Path) -> None:
    path = _existing_checkout(tmp_path)
    runner = FakeProcessRunner(
        [
            _ok(),
            _ok("111\trefs/heads/main\n222\trefs/heads/master\n"),
            _ok(),
            _ok(),
        ]
    )

    asyncio.run(_workspace(tmp_path, runner).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    commands = [args for _, args, _ in runner.invocations]
    assert commands[0] == ("remote", "set-url", "origin", remote_template(tmp_path).format(owner="acme", repo="widget"))
    assert commands[1] == ("ls-remote", "--exit-code", "--heads", "origin", "master", "main")
    assert commands[2] == ("fetch", "origin", "master", "--prune")
    assert commands[3] == ("checkout", "-B", "master", "origin/master")
    assert {cwd for _, _, cwd in runner.invocations} == {str(path)}


def test_ls_remote_no_match_exit_code_is_master_missing(tmp_path: Path) -> None:
    _existing_checkout(tmp_path)
    runner = FakeProcessRunner(
        [_ok(), ProcessResult(args=("git",), returncode=2, stdout="", stderr="")]
    )

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path, runner).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert excinfo.value.code is GitWorkspaceErrorCode.MASTER_BRANCH_MISSING
    assert len(runner.invocations) == 2


def test_other_ls_remote_failure_is_checkout_failed(tmp_path: Path) -> None:
    _existing_checkout(tmp_path)
    runner = FakeProcessRunner(
        [
            _ok(),
            ProcessResult(args=("git",), returncode=128, stdout="", stderr="fatal: could not read from remote"),
        ]
    )

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path, runner).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert excinfo.value.code is GitWorkspaceErrorCode.CHECKOUT_FAILED
    assert "could not read from remote" in str(excinfo.value)


def test_git_timeout_is_checkout_failed(tmp_path: Path) -> None:
    _existing_checkout(tmp_path)
    runner = FakeProcessRunner([_ok(), _ok("1\trefs/heads/main\n"), ProcessTimeoutError(30)])

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path, runner).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert excinfo.value.code is GitWorkspaceErrorCode.CHECKOUT_FAILED


def test_missing_git_binary_is_git_unavailable(tmp_path: Path) -> None:
    runner = FakeProcessRunner([ProcessUnavailableError("git")])

    with pytest.raises(GitWorkspaceError) as excinfo:
        asyncio.run(_workspace(tmp_path, runner).ensure_checkout(RepoIdentity(owner="acme", repo="widget")))

    assert excinfo.value.code is GitWorkspaceErrorCode.GIT_UNAVAILABLE


def test_sync_is_serialized_per_repository(tmp_path: Path) -> None:
    _existing_checkout(tmp_path)
    active: list[str] = []
    overlaps: list[bool] = []

    class SlowRunner(FakeProcessRunner):
        async def run(self, executable, args, *, cwd, timeout, env=None):
            active.append(cwd)
            overlaps.append(len(active) > 1)
            await asyncio.sleep(0.01)
            active.remove(cwd)
            if args and args[0] == "ls-remote":
                return _ok("1\trefs/heads/master\n")
            return _ok()

    workspace = _workspace(tmp_path, SlowRunner())
    identity = RepoIdentity(owner="acme", repo="widget")

    async def scenario() -> None:
        await asyncio.gather(workspace.ensure_checkout(identity), workspace.ensure_checkout(identity))

    asyncio.run(scenario())

    assert overlaps and not any(overlaps)
    assert len(workspace.locks) == 0
