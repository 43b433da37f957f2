"""
Name Sanitization Module

Pure helpers that turn repository and branch names into identifiers that are
safe for tmux session names and shell arguments, plus the git ref-name checks
applied before any worktree-creating command runs.
"""

import re
from typing import Optional, Tuple

SESSION_PREFIX = "cgwt"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_DASH_RUNS = re.compile(r"-{2,}")
_INVALID_REF_CHARS = re.compile(r"[\s~^:?*\[\\\]]|@\{")

_GIT_URL_PATTERNS = [
    re.compile(r"^https?://[\w.-]+(:\d+)?(/[\w.~-]+)+?(\.git)?/?$"),
    re.compile(r"^git@[\w.-]+:[\w./~-]+?(\.git)?$"),
    re.compile(r"^ssh://([\w.-]+@)?[\w.-]+(:\d+)?(/[\w.~-]+)+?(\.git)?/?$"),
    re.compile(r"^git://[\w.-]+(:\d+)?(/[\w.~-]+)+?(\.git)?/?$"),
    re.compile(r"^file://(/[\w.~-]+)+/?$"),
    re.compile(r"^(/[\w.~-]+)+/?$"),
]


def sanitize(identifier: str) -> str:
    """
    Reduce an arbitrary identifier to ``[A-Za-z0-9_-]``.

    Unsafe characters become ``-``, dash runs collapse to one, and leading or
    trailing dashes are stripped. Total and idempotent.
    """
    cleaned = _UNSAFE_CHARS.sub("-", identifier or "")
    cleaned = _DASH_RUNS.sub("-", cleaned)
    return cleaned.strip("-")


def session_name(repo_name: str, branch_name: str) -> str:
    """Canonical session name: ``cgwt-<repo>--<branch>``."""
    return f"{SESSION_PREFIX}-{sanitize(repo_name)}--{sanitize(branch_name)}"


def parse_session_name(name: str) -> Optional[Tuple[str, str]]:
    """
    Split a session name into ``(repo, branch)``.

    Understands the canonical ``cgwt-<repo>--<branch>`` form and the legacy
    ``cgwt-<repo>-<branch>`` form, where the branch is the last dash segment.

    Returns:
        Tuple of (repo, branch), or None if the name is not one of ours
    """
    if not name.startswith(f"{SESSION_PREFIX}-"):
        return None

    remainder = name[len(SESSION_PREFIX) + 1:]
    parts = remainder.split("--")
    if len(parts) == 2:
        if parts[0] and parts[1]:
            return parts[0], parts[1]
        return None

    legacy = remainder.split("-")
    if len(legacy) >= 2 and legacy[-1] and all(legacy[:-1]):
        return "-".join(legacy[:-1]), legacy[-1]
    return None


def is_valid_branch_name(name: str) -> bool:
    """
    Check a branch name against the git ref rules we enforce up front.

    Rejects blank names, a leading dot, ``..``, a trailing slash, a ``.lock``
    suffix, whitespace and any of ``~ ^ : ? * [ \\ ] @{``.
    """
    if not name or not name.strip():
        return False
    if name.startswith(".") or ".." in name:
        return False
    if name.endswith("/") or name.endswith(".lock"):
        return False
    if name.startswith("-"):
        return False
    return _INVALID_REF_CHARS.search(name) is None


def is_valid_git_url(url: str) -> bool:
    """Accept https, ssh, scp-style, git:// and file URLs plus absolute local paths."""
    if not url:
        return False
    return any(pattern.match(url) for pattern in _GIT_URL_PATTERNS)
