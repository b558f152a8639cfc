"""Shared utilities for CLI commands."""

from rich.console import Console

console = Console()


def parse_lang_option(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``TAG=SPEC`` options into a mapping."""
    result = {}
    for value in values:
        tag, sep, spec = value.partition("=")
        if not sep or not tag.strip():
            raise ValueError(f"expected TAG=SPEC, got {value!r}")
        result[tag.strip()] = spec
    return result
