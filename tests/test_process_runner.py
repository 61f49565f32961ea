from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from actuarius.process import (
    FakeProcessRunner,
    ProcessFailedError,
    ProcessResult,
    ProcessRunner,
    ProcessTimeoutError,
    ProcessUnavailableError,
)
from actuarius.process.utils import clip_output, sanitize_environment


def _script(tmp_path: Path, name: str, body: str) -> Path:
    script = tmp_path / name
    script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    script.chmod(0o755)
    return script


def test_runner_collects_stdout_and_stderr(tmp_path: Path) -> None:
    script = _script(tmp_path, "agent", "echo 'hello'\necho 'note' >&2\n")

    result = asyncio.run(ProcessRunner().run(str(script), [], cwd=tmp_path, timeout=5))

    assert result.ok
    assert result.stdout.strip() == "hello"
    assert result.stderr.strip() == "note"
    assert result.args == (str(script),)


def test_runner_passes_arguments_and_cwd(tmp_path: Path) -> None:
    script = _script(tmp_path, "agent", "echo \"$@\"\npwd\n")
    workdir = tmp_path / "work"
    workdir.mkdir()

    result = asyncio.run(
        ProcessRunner().run(str(script), ["-p", "two words"], cwd=workdir, timeout=5)
    )

    lines = result.stdout.splitlines()
    assert lines[0] == "-p two words"
    assert Path(lines[1]).resolve() == workdir.resolve()


def test_runner_closes_stdin(tmp_path: Path) -> None:
    script = _script(tmp_path, "reader", "cat\necho done\n")

    result = asyncio.run(ProcessRunner().run(str(script), [], cwd=tmp_path, timeout=5))

    assert result.stdout.strip() == "done"


def test_runner_merges_extra_environment(tmp_path: Path) -> None:
    script = _script(tmp_path, "env", "echo \"$ACTUARIUS_MARKER\"\n")

    runner = ProcessRunner(env={"ACTUARIUS_MARKER": "base"})
    result = asyncio.run(
        runner.run(str(script), [], cwd=tmp_path, timeout=5, env={"ACTUARIUS_MARKER": "override"})
    )

    assert result.stdout.strip() == "override"


def test_runner_reports_non_zero_exit(tmp_path: Path) -> None:
    script = _script(tmp_path, "broken", "echo 'partial'\necho 'boom' >&2\nexit 3\n")

    with pytest.raises(ProcessFailedError) as excinfo:
        asyncio.run(ProcessRunner().run(str(script), [], cwd=tmp_path, timeout=5))

    assert excinfo.value.returncode == 3
    assert "boom" in excinfo.value.stderr
    assert "partial" in excinfo.value.stdout


def test_runner_times_out_and_keeps_partial_output(tmp_path: Path) -> None:
    script = _script(tmp_path, "slow", "echo 'partial'\nexec sleep 30\n")

    started = time.monotonic()
    with pytest.raises(ProcessTimeoutError) as excinfo:
        asyncio.run(
            ProcessRunner(kill_grace=1.0).run(str(script), [], cwd=tmp_path, timeout=0.5)
        )

    assert time.monotonic() - started < 10
    assert excinfo.value.timeout == 0.5
    assert "partial" in excinfo.value.stdout


def test_runner_missing_binary_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(ProcessUnavailableError) as excinfo:
        asyncio.run(
            ProcessRunner().run("actuarius-no-such-binary", [], cwd=tmp_path, timeout=5)
        )

    assert excinfo.value.executable == "actuarius-no-such-binary"


def test_runner_missing_path_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(ProcessUnavailableError):
        ProcessRunner.resolve(str(tmp_path / "missing"))


def test_runner_missing_cwd_is_failure(tmp_path: Path) -> None:
    script = _script(tmp_path, "agent", "echo ok\n")

    with pytest.raises(ProcessFailedError) as excinfo:
        asyncio.run(
            ProcessRunner().run(str(script), [], cwd=tmp_path / "gone", timeout=5)
        )

    assert excinfo.value.returncode is None


def test_fake_runner_records_invocations() -> None:
    fake = FakeProcessRunner(
        [
            ProcessResult(args=("git",), returncode=0, stdout="ok", stderr=""),
            ProcessResult(args=("git",), returncode=128, stdout="", stderr="fatal"),
        ]
    )

    async def scenario() -> None:
        first = await fake.run("git", ["status"], cwd="/repo", timeout=1)
        assert first.stdout == "ok"
        with pytest.raises(ProcessFailedError) as excinfo:
            await fake.run("git", ["fetch"], cwd="/repo", timeout=1)
        assert excinfo.value.returncode == 128
        assert excinfo.value.stderr == "fatal"
        empty = await fake.run("git", ["prune"], cwd="/repo", timeout=1)
        assert empty.ok and empty.stdout == ""

    asyncio.run(scenario())

    assert fake.invocations == [
        ("git", ("status",), "/repo"),
        ("git", ("fetch",), "/repo"),
        ("git", ("prune",), "/repo"),
    ]


def test_sanitize_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    env = sanitize_environment({"EXTRA": "1"})
    assert "PYTHONPATH" not in env
    assert env["EXTRA"] == "1"


def test_sanitize_environment_uses_given_strip_set(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("AGENT_TOKEN", "secret")

    env = sanitize_environment(strip={"AGENT_TOKEN"})

    assert env["PYTHONPATH"] == "value"
    assert "AGENT_TOKEN" not in env


def test_runner_strips_configured_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_TOKEN", "secret")
    monkeypatch.setenv("PYTHONPATH", "value")
    script = _script(tmp_path, "agent", "echo \"token=$AGENT_TOKEN path=$PYTHONPATH\"\n")

    default = asyncio.run(ProcessRunner().run(str(script), [], cwd=tmp_path, timeout=5))
    custom = asyncio.run(
        ProcessRunner(strip_env={"AGENT_TOKEN"}).run(str(script), [], cwd=tmp_path, timeout=5)
    )

    assert default.stdout.strip() == "token=secret path="
    assert custom.stdout.strip() == "token= path=value"


def test_clip_output_truncates_long_text() -> None:
    assert clip_output("  short  ") == "short"
    clipped = clip_output("x" * 600)
    assert clipped.startswith("x" * 500)
    assert clipped.endswith("...(truncated)")
