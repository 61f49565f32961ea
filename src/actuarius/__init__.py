"""Actuarius: per-guild coding-agent requests over isolated git worktrees."""

__version__ = "0.1.0"
