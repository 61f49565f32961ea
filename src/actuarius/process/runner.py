"""Async runner for external command-line tools."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from .utils import DEFAULT_STRIPPED_VARS, sanitize_environment

logger = logging.getLogger(__name__)

_KILL_GRACE_SECONDS = 5.0
_DRAIN_GRACE_SECONDS = 5.0
_READ_CHUNK_SIZE = 64 * 1024


class ProcessError(RuntimeError):
    """Base class for process runner errors.

    Whatever the child wrote before failing is kept on ``stdout`` and
    ``stderr`` for diagnostics.
    """

    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class ProcessUnavailableError(ProcessError):
    """Raised when the executable cannot be located."""

    def __init__(self, executable: str) -> None:
        super().__init__(f"Executable '{executable}' not found on PATH")
        self.executable = executable


class ProcessTimeoutError(ProcessError):
    """Raised when the child exceeded its wall-clock budget and was killed."""

    def __init__(self, timeout: float, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"Process timed out after {timeout:g}s", stdout=stdout, stderr=stderr)
        self.timeout = timeout


class ProcessFailedError(ProcessError):
    """Raised when the child exited non-zero or could not be started."""

    def __init__(
        self,
        returncode: int | None,
        message: str | None = None,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(
            message or f"Process exited with code {returncode}",
            stdout=stdout,
            stderr=stderr,
        )
        self.returncode = returncode


@dataclass(slots=True)
class ProcessResult:
    """Holds the outcome of a successful invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_SIZE)
        if not chunk:
            return
        buffer.extend(chunk)


def _decode(buffer: bytearray) -> str:
    return bytes(buffer).decode("utf-8", errors="replace")


class ProcessRunner:
    """Execute external programs with stdin closed and a hard timeout."""

    def __init__(
        self,
        *,
        env: Mapping[str, str] | None = None,
        strip_env: Iterable[str] = DEFAULT_STRIPPED_VARS,
        kill_grace: float = _KILL_GRACE_SECONDS,
    ) -> None:
        self._env = dict(env or {})
        self._strip_env = frozenset(strip_env)
        self._kill_grace = kill_grace

    @staticmethod
    def resolve(executable: str) -> str:
        """Return the absolute path of ``executable`` or raise ``ProcessUnavailableError``."""

        if os.sep in executable:
            candidate = Path(executable)
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
            raise ProcessUnavailableError(executable)

        binary = shutil.which(executable)
        if binary is None:
            raise ProcessUnavailableError(executable)
        return binary

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        cwd: Path | str,
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """Run ``executable`` and resolve once the child has exited.

        The child is always reaped before this coroutine returns or raises,
        including when the caller cancels it.
        """

        cmd = [self.resolve(executable), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment({**self._env, **(env or {})}, strip=self._strip_env),
            )
        except OSError as exc:
            raise ProcessFailedError(None, f"Could not start '{executable}': {exc}") from exc

        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        readers = [
            asyncio.ensure_future(_drain(process.stdout, stdout_buffer)),
            asyncio.ensure_future(_drain(process.stderr, stderr_buffer)),
        ]
        timed_out = False
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout)
            except asyncio.TimeoutError:
                timed_out = True
                await self._terminate(process)
            await asyncio.wait(readers, timeout=_DRAIN_GRACE_SECONDS)
        finally:
            if process.returncode is None:
                _kill(process)
                await process.wait()
            for reader in readers:
                if not reader.done():
                    reader.cancel()

        stdout = _decode(stdout_buffer)
        stderr = _decode(stderr_buffer)

        if timed_out:
            logger.warning(
                "Process killed after timeout",
                extra={"executable": executable, "timeout": timeout, "cwd": str(cwd)},
            )
            raise ProcessTimeoutError(timeout, stdout=stdout, stderr=stderr)

        if process.returncode != 0:
            raise ProcessFailedError(process.returncode, stdout=stdout, stderr=stderr)

        return ProcessResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), self._kill_grace)
        except asyncio.TimeoutError:
            _kill(process)
            await process.wait()


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


class FakeProcessRunner(ProcessRunner):
    """Test double that replays canned results instead of spawning processes.

    Each queued response is either a ``ProcessResult`` or an exception to
    raise. A result with a non-zero return code raises ``ProcessFailedError``
    the way a real child would.
    """

    def __init__(self, responses: Iterable[ProcessResult | BaseException] | None = None) -> None:
        super().__init__()
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, tuple[str, ...], str]] = []

    def queue(self, response: ProcessResult | BaseException) -> None:
        self._responses.append(response)

    async def run(  # type: ignore[override]
        self,
        executable: str,
        args: Sequence[str],
        *,
        cwd: Path | str,
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        self._invocations.append((executable, tuple(args), str(cwd)))
        if not self._responses:
            return ProcessResult(args=(executable, *args), returncode=0, stdout="", stderr="")

        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if not response.ok:
            raise ProcessFailedError(
                response.returncode, stdout=response.stdout, stderr=response.stderr
            )
        return response

    @property
    def invocations(self) -> list[tuple[str, tuple[str, ...], str]]:
        return self._invocations


__all__ = [
    "FakeProcessRunner",
    "ProcessError",
    "ProcessFailedError",
    "ProcessResult",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessUnavailableError",
]
