"""
Tmux Enhancer Module

Cosmetic and ergonomic configuration applied to claude-gwt sessions: copy
mode, role-coloured status bar, key bindings and hooks. Every step is
best-effort; a failed tmux option is logged and skipped so a session is never
lost because of styling.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..core.models import Role, SessionDescriptor
from ..utils.sanitize import SESSION_PREFIX, sanitize
from .driver import TmuxDriver

logger = logging.getLogger(__name__)

SUPERVISOR_BG = "colour32"
CHILD_BG = "colour25"
STATUS_FG = "colour255"


@dataclass(frozen=True)
class PaneLayout:
    name: str
    description: str
    branches: List[str] = field(default_factory=list)
    layout: str = "tiled"


PREDEFINED_LAYOUTS = [
    PaneLayout("main-feature", "Main branch and feature branch side by side",
               ["main", "feature/*"], "even-horizontal"),
    PaneLayout("triple-review", "Three branches for code review",
               ["main", "develop", "feature/*"], "even-horizontal"),
    PaneLayout("quad-split", "Four branches in grid layout",
               ["*", "*", "*", "*"], "tiled"),
    PaneLayout("main-develop", "Main branch with develop branch below",
               ["main", "develop"], "main-horizontal"),
]

KEY_BINDINGS: List[Tuple[str, List[str], bool]] = [
    ("S", ["choose-tree", "-s"], False),
    ("h", ["select-pane", "-L"], False),
    ("j", ["select-pane", "-D"], False),
    ("k", ["select-pane", "-U"], False),
    ("l", ["select-pane", "-R"], False),
    ("H", ["resize-pane", "-L", "5"], True),
    ("J", ["resize-pane", "-D", "5"], True),
    ("K", ["resize-pane", "-U", "5"], True),
    ("L", ["resize-pane", "-R", "5"], True),
    ("=", ["select-layout", "even-horizontal"], False),
    ("|", ["select-layout", "even-vertical"], False),
    ("+", ["select-layout", "main-horizontal"], False),
    ("_", ["select-layout", "main-vertical"], False),
    ("y", ["setw", "synchronize-panes"], False),
    ("b", ["split-window", "-h", "-c", "#{pane_current_path}"], False),
    ("B", ["split-window", "-v", "-c", "#{pane_current_path}"], False),
]

COPY_MODE_BINDINGS: List[Tuple[str, List[str]]] = [
    ("v", ["send-keys", "-X", "begin-selection"]),
    ("C-v", ["send-keys", "-X", "rectangle-toggle"]),
    ("y", ["send-keys", "-X", "copy-selection-and-cancel"]),
    ("Escape", ["send-keys", "-X", "cancel"]),
]


def status_left(descriptor: SessionDescriptor, project_name: str) -> str:
    supervisor = descriptor.role == Role.SUPERVISOR
    badge_bg = "colour196" if supervisor else "colour28"
    badge = "SUP" if supervisor else "WRK"
    bg = SUPERVISOR_BG if supervisor else CHILD_BG
    label = project_name if supervisor else f"{project_name}:{descriptor.branch_name}"
    return (f"#[bg={badge_bg},fg={STATUS_FG},bold] {badge} "
            f"#[bg=colour236,fg={STATUS_FG}] {label} "
            f"#[bg={bg},fg={STATUS_FG}] ")


def status_right(project_name: str) -> str:
    return ("#[bg=colour28,fg=colour255] #{b:pane_current_path} "
            "#[bg=colour236,fg=colour255] "
            "#(cd #{pane_current_path} && git status -s 2>/dev/null | wc -l | tr -d ' ') changed "
            "#[bg=colour237,fg=colour255] "
            f"#(tmux ls 2>/dev/null | grep -c '^{SESSION_PREFIX}-{sanitize(project_name)}--') sessions "
            "#[bg=colour238,fg=colour255] %H:%M:%S ")


class TmuxEnhancer:
    """Applies claude-gwt look and feel to a session."""

    def __init__(self, driver: TmuxDriver):
        self.driver = driver

    async def configure_session(self, descriptor: SessionDescriptor, project_name: str) -> int:
        """
        Apply copy mode, status bar, key bindings and hooks to a session.

        Args:
            descriptor: Session being configured
            project_name: Repository name shown in the status bar

        Returns:
            Number of tmux commands that failed
        """
        failures = 0
        failures += await self._configure_copy_mode(descriptor.name)
        failures += await self._configure_status_bar(descriptor, project_name)
        failures += await self._configure_key_bindings()
        failures += await self._configure_hooks(descriptor)

        if failures:
            logger.debug("Session configured with failures", extra={"context": {
                "session": descriptor.name, "failures": failures}})
        return failures

    async def toggle_synchronized_panes(self, session_name: str) -> Optional[bool]:
        """Flip ``synchronize-panes`` on the session's current window; returns the new state."""
        current = await self.driver.show_window_option(session_name, "synchronize-panes")
        new_state = "off" if current == "on" else "on"
        if await self._apply(self.driver.set_window_option(session_name, "synchronize-panes", new_state)):
            logger.info("Toggled synchronized panes", extra={"context": {
                "session": session_name, "state": new_state}})
            return new_state == "on"
        return None

    async def apply_layout(self, session_name: str, layout_name: str) -> bool:
        """Select one of the predefined layouts on the session's current window."""
        for layout in PREDEFINED_LAYOUTS:
            if layout.name == layout_name:
                return await self._apply(self.driver.select_layout(session_name, layout.layout))
        logger.warning("Unknown layout", extra={"context": {"layout": layout_name}})
        return False

    async def _configure_copy_mode(self, session_name: str) -> int:
        failures = 0
        for option, value in (("mode-keys", "vi"), ("mouse", "on")):
            if not await self._apply(self.driver.set_option(session_name, option, value)):
                failures += 1
        for key, command in COPY_MODE_BINDINGS:
            if not await self._apply(self.driver.bind_key(key, command, table="copy-mode-vi")):
                failures += 1
        return failures

    async def _configure_status_bar(self, descriptor: SessionDescriptor, project_name: str) -> int:
        bg = SUPERVISOR_BG if descriptor.role == Role.SUPERVISOR else CHILD_BG
        options = [
            ("status", "on"),
            ("status-interval", "5"),
            ("status-position", "bottom"),
            ("status-style", f"bg={bg},fg={STATUS_FG}"),
            ("status-left", status_left(descriptor, project_name)),
            ("status-left-length", "60"),
            ("status-justify", "centre"),
            ("window-status-current-style", f"bg=colour236,fg={STATUS_FG},bold"),
            ("window-status-current-format", " #I:#W#{?window_zoomed_flag,+,} "),
            ("window-status-format", " #I:#W#{?window_activity_flag,*,} "),
            ("window-status-activity-style", "bg=colour88,fg=colour255"),
            ("status-right", status_right(project_name)),
            ("status-right-length", "150"),
        ]
        failures = 0
        for option, value in options:
            if not await self._apply(self.driver.set_option(descriptor.name, option, value)):
                failures += 1
        if not await self._apply(self.driver.set_window_option(descriptor.name, "monitor-activity", "on")):
            failures += 1
        return failures

    async def _configure_key_bindings(self) -> int:
        failures = 0
        for key, command, repeat in KEY_BINDINGS:
            if not await self._apply(self.driver.bind_key(key, command, repeat=repeat)):
                failures += 1
        return failures

    async def _configure_hooks(self, descriptor: SessionDescriptor) -> int:
        hooks = [("alert-activity", 'display-message "Activity in #S"')]
        if descriptor.role == Role.SUPERVISOR:
            hooks.append(("session-created", 'display-message "New session created: #{hook_session}"'))
            hooks.append(("session-closed", 'display-message "Session closed: #{hook_session}"'))

        failures = 0
        for hook, command in hooks:
            if not await self._apply(self.driver.set_hook(descriptor.name, hook, command)):
                failures += 1
        return failures

    async def _apply(self, call) -> bool:
        try:
            result = await call
        except Exception as e:
            logger.debug("tmux enhancement failed", extra={"context": {"error": str(e)}})
            return False
        if not result.ok:
            logger.debug("tmux enhancement rejected", extra={"context": {"stderr": result.stderr.strip()}})
            return False
        return True
