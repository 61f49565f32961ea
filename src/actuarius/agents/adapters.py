"""Coding-agent CLI adapters built on the process runner."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Protocol

from ..process import (
    ProcessError,
    ProcessRunner,
    ProcessTimeoutError,
    ProcessUnavailableError,
)
from ..process.utils import clip_output
from .extraction import parse_json_output, parse_plain_output

logger = logging.getLogger(__name__)


class ExecutionErrorKind(str, Enum):
    UNAVAILABLE = "UNAVAILABLE"
    DISABLED = "DISABLED"
    TIMEOUT = "TIMEOUT"
    FAILED = "FAILED"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"


_NAMESPACED_KINDS = {ExecutionErrorKind.UNAVAILABLE, ExecutionErrorKind.DISABLED}


class AgentExecutionError(RuntimeError):
    """Raised when an agent run does not produce usable text."""

    def __init__(
        self,
        provider: str,
        kind: ExecutionErrorKind,
        message: str,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.kind = kind
        self.stdout = stdout
        self.stderr = stderr

    @property
    def code(self) -> str:
        """Error code, namespaced by provider for availability problems (``CODEX_DISABLED``)."""

        if self.kind in _NAMESPACED_KINDS:
            return f"{self.provider.upper()}_{self.kind.value}"
        return self.kind.value


class UnknownProviderError(ValueError):
    """Raised when a provider name does not match any known agent variant."""


@dataclass(slots=True)
class ExecutionResult:
    text: str


@dataclass(slots=True, frozen=True)
class AgentVariant:
    """Binary name, argument shape and output unwrapping for one agent CLI."""

    name: str
    display_name: str
    executable: str
    build_args: Callable[[str, str | None], list[str]]
    parse_output: Callable[[str], str | None]


def _claude_args(prompt: str, model: str | None) -> list[str]:
    # cwd is already the worktree root, so --add-dir is not needed.
    args = ["-p", prompt, "--output-format", "json", "--permission-mode", "bypassPermissions"]
    if model:
        args.extend(["--model", model])
    return args


def _codex_args(prompt: str, model: str | None) -> list[str]:
    args = ["exec", "--full-auto"]
    if model:
        args.extend(["--model", model])
    args.append(prompt)
    return args


def _gemini_args(prompt: str, model: str | None) -> list[str]:
    args = ["-p", prompt]
    if model:
        args.extend(["--model", model])
    return args


CLAUDE = AgentVariant(
    name="claude",
    display_name="Claude",
    executable="claude",
    build_args=_claude_args,
    parse_output=parse_json_output,
)
CODEX = AgentVariant(
    name="codex",
    display_name="Codex",
    executable="codex",
    build_args=_codex_args,
    parse_output=parse_plain_output,
)
GEMINI = AgentVariant(
    name="gemini",
    display_name="Gemini",
    executable="gemini",
    build_args=_gemini_args,
    parse_output=parse_plain_output,
)

VARIANTS: dict[str, AgentVariant] = {variant.name: variant for variant in (CLAUDE, CODEX, GEMINI)}


def get_variant(name: str) -> AgentVariant:
    try:
        return VARIANTS[name.strip().lower()]
    except KeyError as exc:
        raise UnknownProviderError(
            f"Unknown provider '{name}'. Expected one of {sorted(VARIANTS)}"
        ) from exc


class AgentExecutor(Protocol):
    """What the orchestrator needs from an adapter."""

    @property
    def name(self) -> str:
        ...

    @property
    def display_name(self) -> str:
        ...

    async def run(
        self,
        prompt: str,
        cwd: Path | str,
        timeout: float,
        model: str | None = None,
    ) -> ExecutionResult:
        ...


class AgentAdapter:
    """Run one agent variant as a subprocess and classify the outcome."""

    def __init__(
        self,
        variant: AgentVariant,
        *,
        runner: ProcessRunner | None = None,
        enabled: bool = True,
    ) -> None:
        self._variant = variant
        self._runner = runner or ProcessRunner()
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._variant.name

    @property
    def display_name(self) -> str:
        return self._variant.display_name

    @property
    def executable(self) -> str:
        return self._variant.executable

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def run(
        self,
        prompt: str,
        cwd: Path | str,
        timeout: float,
        model: str | None = None,
    ) -> ExecutionResult:
        variant = self._variant
        if not self._enabled:
            raise AgentExecutionError(
                variant.name,
                ExecutionErrorKind.DISABLED,
                f"{variant.display_name} execution is disabled by the operator.",
            )

        args = variant.build_args(prompt, model)
        logger.debug(
            "Agent subprocess starting",
            extra={"provider": variant.name, "cwd": str(cwd), "timeout": timeout, "prompt_length": len(prompt)},
        )

        try:
            result = await self._runner.run(variant.executable, args, cwd=cwd, timeout=timeout)
        except ProcessError as exc:
            raise self._classify(exc, timeout) from exc

        if result.stderr:
            logger.debug("Agent subprocess stderr", extra={"provider": variant.name, "stderr": clip_output(result.stderr)})

        text = variant.parse_output(result.stdout)
        if not text:
            raise AgentExecutionError(
                variant.name,
                ExecutionErrorKind.EMPTY_OUTPUT,
                f"{variant.display_name} returned empty output.",
                stdout=result.stdout,
                stderr=result.stderr,
            )

        logger.debug("Agent subprocess exited cleanly", extra={"provider": variant.name, "output_length": len(text)})
        return ExecutionResult(text=text)

    def _classify(self, exc: ProcessError, timeout: float) -> AgentExecutionError:
        variant = self._variant
        logger.error(
            "Agent subprocess failed",
            extra={
                "provider": variant.name,
                "error_type": type(exc).__name__,
                "returncode": getattr(exc, "returncode", None),
                "stderr": clip_output(exc.stderr),
                "stdout_partial": clip_output(exc.stdout),
            },
        )

        if isinstance(exc, ProcessUnavailableError):
            kind = ExecutionErrorKind.UNAVAILABLE
            message = f"{variant.display_name} CLI is not installed or not available in PATH."
        elif isinstance(exc, ProcessTimeoutError):
            kind = ExecutionErrorKind.TIMEOUT
            message = f"{variant.display_name} execution timed out after {timeout:g}s."
        else:
            kind = ExecutionErrorKind.FAILED
            message = f"{variant.display_name} execution failed: {exc}"
            detail = clip_output(exc.stderr, 300)
            if detail:
                message = f"{message}\n{detail}"

        return AgentExecutionError(variant.name, kind, message, stdout=exc.stdout, stderr=exc.stderr)


def build_adapters(
    enabled: Mapping[str, bool],
    *,
    runner: ProcessRunner | None = None,
) -> dict[str, AgentAdapter]:
    """Create one adapter per known variant; variants missing from ``enabled`` are disabled."""

    shared_runner = runner or ProcessRunner()
    return {
        name: AgentAdapter(variant, runner=shared_runner, enabled=bool(enabled.get(name, False)))
        for name, variant in VARIANTS.items()
    }


__all__ = [
    "AgentAdapter",
    "AgentExecutionError",
    "AgentExecutor",
    "AgentVariant",
    "CLAUDE",
    "CODEX",
    "ExecutionErrorKind",
    "ExecutionResult",
    "GEMINI",
    "UnknownProviderError",
    "VARIANTS",
    "build_adapters",
    "get_variant",
]
