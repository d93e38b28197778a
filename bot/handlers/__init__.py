"""Aggregate bot handlers for dispatch registration."""

from .commands import CommandHandlers, parse_new_contest_args

__all__ = [
    "CommandHandlers",
    "parse_new_contest_args",
]
