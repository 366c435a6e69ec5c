"""Human-readable status strings for agent tool calls."""

from __future__ import annotations

TOOL_VERBS = {
    "Read": "Reading",
    "Write": "Writing",
    "Edit": "Editing",
    "MultiEdit": "Editing",
    "StrReplace": "Editing",
    "Bash": "Running command",
    "Shell": "Running command",
    "Grep": "Searching",
    "Glob": "Finding files",
    "LS": "Listing directory",
    "Task": "Running subtask",
    "TodoWrite": "Updating tasks",
    "WebFetch": "Fetching URL",
    "WebSearch": "Searching web",
    "NotebookEdit": "Editing notebook",
}


def _file_path(inp: object) -> str | None:
    if not isinstance(inp, dict):
        return None
    for key in ("file_path", "path", "notebook_path"):
        value = inp.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def shorten_path(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    return "/".join(parts[-2:])


def tool_status(name: str, inp: object = None) -> str:
    """Create a compact status line like ``Editing lib/session.py``."""
    verb = TOOL_VERBS.get(name)
    if verb is None:
        # strip common MCP prefixes
        verb = f"Using tool: {name.replace('mcp__', '')}"
    path = _file_path(inp)
    if path:
        return f"{verb} {shorten_path(path)}"
    if name == "Bash" and isinstance(inp, dict) and inp.get("command"):
        return f"$ {str(inp['command'])[:60]}"
    return verb
