"""Tool declarations for Mastermind.

``ToolExecutor`` lives in ``mastermind.tools.executor``; it depends on the
policy engine, which in turn reads the declarations from this package.
"""

from mastermind.tools.declarations import (
    TOOL_DECLARATIONS,
    TOOLS_BY_NAME,
    ToolSpec,
    declarations_for,
)

__all__ = [
    "TOOL_DECLARATIONS",
    "TOOLS_BY_NAME",
    "ToolSpec",
    "declarations_for",
]
