"""
Git helpers — checkout detection and output parsing.

Git itself is only ever invoked through the command runner; these
helpers inspect the filesystem and interpret what git printed.
"""

from __future__ import annotations

from pathlib import Path


def is_checkout(path: str | Path | None) -> bool:
    """Whether ``path`` is the root of a git working tree."""
    if not path:
        return False
    return (Path(path) / ".git").exists()


def is_empty_dir(path: str | Path) -> bool:
    p = Path(path)
    return p.is_dir() and not any(p.iterdir())


def parse_rev_parse(lines: list[str]) -> str:
    """First non-empty line of ``git rev-parse`` output."""
    for line in lines:
        line = line.strip()
        if line:
            return line
    return ""


def parse_ls_remote(lines: list[str]) -> str | None:
    """Hash from ``git ls-remote`` output (``<hash>\\t<ref>``).

    Returns None when the ref was not advertised.
    """
    for line in lines:
        parts = line.split()
        if parts and not parts[0].startswith("$"):
            return parts[0]
    return None


def revisions_match(a: str | None, b: str | None) -> bool:
    """Compare two revisions, allowing one to be an abbreviated hash."""
    if not a or not b:
        return False
    a, b = a.strip().lower(), b.strip().lower()
    return a.startswith(b) or b.startswith(a)
