"""The fixed table of tools the model may call.

Each tool belongs to exactly one capability group; a group that is
disabled in ``PermissionSpec`` hides its tools from the model and blocks
them at execution time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mastermind.config import PermissionSpec
from mastermind.types import ToolParameter


@dataclass(frozen=True)
class ToolSpec:
    """Declaration of one recognised tool."""

    name: str
    description: str
    capability: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_function_declaration(self) -> dict[str, Any]:
        """Convert to a Vertex AI ``functionDeclarations`` entry."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.type}
            if p.description:
                prop["description"] = p.description
            properties[p.name] = prop
            if p.required:
                required.append(p.name)

        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return {
            "name": self.name,
            "description": self.description,
            "parameters": schema,
        }


def _path(description: str = "") -> ToolParameter:
    return ToolParameter("path", "string", description)


def _content(description: str = "") -> ToolParameter:
    return ToolParameter("content", "string", description)


TOOL_DECLARATIONS: tuple[ToolSpec, ...] = (
    # -- read --
    ToolSpec(
        "list_files",
        "Lists all markdown files in the vault.",
        "read",
    ),
    ToolSpec(
        "list_directory",
        "Lists the contents of a specific directory/folder.",
        "read",
        [_path("The path of the folder to list.")],
    ),
    ToolSpec(
        "read_file",
        "Reads the full content of a specified markdown file.",
        "read",
        [_path("The absolute path of the file to read.")],
    ),
    ToolSpec(
        "search_content",
        "Searches for a keyword or phrase within all markdown files in the vault.",
        "read",
        [ToolParameter("query", "string", "The search term.")],
    ),
    ToolSpec(
        "get_tags",
        "Gets all unique tags in the vault.",
        "read",
    ),
    ToolSpec(
        "get_links",
        "Gets all outgoing links from a specific note.",
        "read",
        [_path()],
    ),
    # -- write --
    ToolSpec(
        "create_note",
        "Creates a new markdown note with the specified content.",
        "write",
        [
            _path('The path for the new note (e.g., "Summaries/MyNote.md").'),
            _content("The content of the note."),
        ],
    ),
    ToolSpec(
        "create_folder",
        "Creates a new folder.",
        "write",
        [_path("The path for the new folder.")],
    ),
    ToolSpec(
        "move_file",
        "Moves or renames a file or folder.",
        "write",
        [
            ToolParameter("oldPath", "string", "The current path."),
            ToolParameter("newPath", "string", "The new path."),
        ],
    ),
    ToolSpec(
        "append_to_note",
        "Appends content to the end of a note.",
        "write",
        [_path(), _content()],
    ),
    ToolSpec(
        "prepend_to_note",
        "Prepends content to the start of a note (after frontmatter if present).",
        "write",
        [_path(), _content()],
    ),
    ToolSpec(
        "update_section",
        "Updates a specific section of a note under a given header.",
        "write",
        [
            _path(),
            ToolParameter("header", "string", "The exact header text (without #)"),
            _content("The new content for the section"),
        ],
    ),
    # -- delete --
    ToolSpec(
        "delete_file",
        "Deletes a file or folder. Use with caution.",
        "delete",
        [_path("The path of the file to delete.")],
    ),
    # -- network --
    ToolSpec(
        "fetch_url",
        "Fetches the content of a URL. Useful for reading documentation or articles.",
        "network",
        [ToolParameter("url", "string", "The absolute URL to fetch.")],
    ),
    ToolSpec(
        "generate_image",
        "Generates an image based on a prompt. Use this when the user asks "
        "to draw, paint, or create an image.",
        "network",
        [ToolParameter("prompt", "string", "The visual description of the image to generate.")],
    ),
    # -- shell --
    ToolSpec(
        "run_terminal_command",
        "Executes a shell command on the host OS. Use with caution.",
        "shell",
        [ToolParameter("command", "string", "The shell command to execute.")],
    ),
)

TOOLS_BY_NAME: dict[str, ToolSpec] = {spec.name: spec for spec in TOOL_DECLARATIONS}


def declarations_for(permissions: PermissionSpec) -> list[dict[str, Any]]:
    """Function declarations for every tool whose capability is enabled."""
    return [
        spec.to_function_declaration()
        for spec in TOOL_DECLARATIONS
        if permissions.is_enabled(spec.capability)
    ]
