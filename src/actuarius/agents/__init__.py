"""Coding-agent execution adapters."""

from .adapters import (
    AgentAdapter,
    AgentExecutionError,
    AgentExecutor,
    AgentVariant,
    ExecutionErrorKind,
    ExecutionResult,
    UnknownProviderError,
    VARIANTS,
    build_adapters,
    get_variant,
)
from .extraction import extract_text

__all__ = [
    "AgentAdapter",
    "AgentExecutionError",
    "AgentExecutor",
    "AgentVariant",
    "ExecutionErrorKind",
    "ExecutionResult",
    "UnknownProviderError",
    "VARIANTS",
    "build_adapters",
    "extract_text",
    "get_variant",
]
