"""
Context File Module

Writes ``.claude-context.md`` into a session's working directory so the
assistant knows its role, branch and the session commands available to it.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.models import Role, SessionDescriptor
from ..utils.config_loader import GWTConfig
from ..utils.file_utils import FileUtils

logger = logging.getLogger(__name__)

CONTEXT_FILE_NAME = ".claude-context.md"

SUPERVISOR_BRIEF = """### You are the SUPERVISOR for {project}

As the SUPERVISOR you coordinate work across all branches in this project.

Responsibilities:
- Oversee development across all feature branches
- Coordinate merging and integration strategies
- Maintain project-wide standards and architecture
- Review and guide work from branch sessions
"""

CHILD_BRIEF = """### You are a BRANCH WORKER on {branch}

You focus on the {branch} branch of {project}.

Focus:
- Implement features and fixes specific to this branch
- Follow project standards set by the supervisor
- Report progress and issues back to the supervisor when needed
"""

COMMANDS_HELP = """### Session Commands:
- `:l` - List all sessions
- `:s <index|branch>` - Select a session
- `:s` - Return to the supervisor
- `:b <text>` - Broadcast to every other session
- `:exit` - Leave the interactive session
"""


def custom_context(context: Dict[str, Any], project_name: str, branch_name: str, role: Role) -> List[str]:
    """
    Collect configured context blocks in precedence order.

    Order: global, role, project global, project role, project branch (children only).
    """
    blocks: List[str] = []
    role_key = "supervisor" if role == Role.SUPERVISOR else "child"

    def add(value: Any) -> None:
        if isinstance(value, str) and value.strip():
            blocks.append(value.strip())

    add(context.get("global"))
    add(context.get(role_key))

    project = (context.get("projects") or {}).get(project_name)
    if isinstance(project, dict):
        add(project.get("global"))
        add(project.get(role_key))
        if role == Role.CHILD:
            add((project.get("branches") or {}).get(branch_name))
    return blocks


def render_context(descriptor: SessionDescriptor,
                   project_name: str,
                   config: Optional[GWTConfig] = None) -> str:
    config = config or GWTConfig()
    if descriptor.role == Role.SUPERVISOR:
        brief = SUPERVISOR_BRIEF.format(project=project_name)
    else:
        brief = CHILD_BRIEF.format(project=project_name, branch=descriptor.branch_name)

    content = (
        "# Claude GWT Context\n\n"
        f"## Role: {descriptor.role.value.upper()}\n"
        f"## Branch: {descriptor.branch_name}\n"
        f"## Session: {descriptor.name}\n"
        f"## Project: {project_name}\n\n"
        f"{brief}\n"
        f"{COMMANDS_HELP}\n"
        "### Current Context:\n"
        f"Working directory: {descriptor.working_directory}\n"
    )

    extra = custom_context(config.context, project_name, descriptor.branch_name, descriptor.role)
    if extra:
        content += "\n---\n\n" + "\n\n".join(extra) + "\n"
    return content


def write_context_file(descriptor: SessionDescriptor,
                       project_name: str,
                       config: Optional[GWTConfig] = None) -> Optional[Path]:
    """
    Write the context file for a session.

    Returns:
        Path written, or None if the write failed (logged, not raised)
    """
    path = Path(descriptor.working_directory) / CONTEXT_FILE_NAME
    if FileUtils.write_text(path, render_context(descriptor, project_name, config)):
        logger.debug("Context file written", extra={"context": {"path": str(path), "session": descriptor.name}})
        return path
    return None
