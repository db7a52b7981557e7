"""Capability gating for tool calls.

Every recognised tool belongs to one capability group:
  read     - list_files, list_directory, read_file, search_content,
             get_tags, get_links
  write    - create_note, create_folder, move_file, append_to_note,
             prepend_to_note, update_section
  delete   - delete_file
  network  - fetch_url, generate_image
  shell    - run_terminal_command

Violations are returned to the model as tool errors so it can adapt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mastermind.config import PermissionSpec
from mastermind.tools.declarations import TOOL_DECLARATIONS

_logger = logging.getLogger(__name__)

# Tool name -> capability mapping
TOOL_CAPABILITIES: dict[str, str] = {
    spec.name: spec.capability for spec in TOOL_DECLARATIONS
}


@dataclass
class PolicyViolation:
    """Describes why a tool call was blocked."""

    rule: str
    message: str
    tool: str
    capability: str


@dataclass
class CallUsage:
    """Counts tool calls per capability within one chat invocation."""

    calls: dict[str, int] = field(default_factory=dict)

    def record(self, capability: str) -> None:
        self.calls[capability] = self.calls.get(capability, 0) + 1

    @property
    def total(self) -> int:
        return sum(self.calls.values())

    def summary(self) -> str:
        parts = [f"{cap}:{n}" for cap, n in sorted(self.calls.items())]
        return f"tools:{self.total} ({', '.join(parts)})"


class PolicyEngine:
    """Evaluates tool calls against the enabled capabilities.

    Usage::

        engine = PolicyEngine(permissions)
        violation = engine.check(tool_name)
        if violation:
            return error
        engine.record(tool_name)
    """

    def __init__(self, permissions: PermissionSpec | None = None) -> None:
        self.permissions = permissions or PermissionSpec()
        self.usage = CallUsage()

    def is_enabled(self, tool_name: str) -> bool:
        capability = TOOL_CAPABILITIES.get(tool_name)
        return capability is not None and self.permissions.is_enabled(capability)

    def check(self, tool_name: str) -> PolicyViolation | None:
        """Check if a tool call is allowed. Returns None if OK."""
        capability = TOOL_CAPABILITIES.get(tool_name)
        if capability is None:
            return PolicyViolation(
                rule="unknown_tool",
                message=(
                    f"Unknown tool: {tool_name}. "
                    f"Available: {', '.join(TOOL_CAPABILITIES)}"
                ),
                tool=tool_name,
                capability="unknown",
            )
        if not self.permissions.is_enabled(capability):
            _logger.info("Blocked %s: capability '%s' disabled", tool_name, capability)
            return PolicyViolation(
                rule="capability_disabled",
                message=(
                    f"Tool '{tool_name}' requires the '{capability}' permission, "
                    f"which is disabled. Ask the user to enable '{capability}' "
                    f"access in the settings."
                ),
                tool=tool_name,
                capability=capability,
            )
        return None

    def record(self, tool_name: str) -> None:
        """Record a dispatched tool call."""
        self.usage.record(TOOL_CAPABILITIES.get(tool_name, "unknown"))
