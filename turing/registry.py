"""Tool definitions and safety classification for the assistant.

Schemas use the OpenAI function-calling format, which LiteLLM translates
for every provider.
"""

import copy
import enum

from .errors import ToolArgumentError, UnknownToolError
from .models import EditFile, RunCommand, WriteFile


class Safety(enum.Enum):
    ALWAYS_SAFE = "always_safe"
    MODEL_DECLARED = "model_declared"


RUN_COMMAND_TOOL = {
    "type": "function",
    "function": {
        "name": "run_command",
        "description": (
            "Run a shell command on the user's system and return its output. "
            "Run this immediately for information gathering (ls, pwd, cat, find, grep, git status) "
            "and set safe=true. For commands that delete, move or overwrite data, install software "
            "or change system state (rm, mv, chmod, pip install, git push), set safe=false: "
            "the user will be asked to confirm. Never ask for permission in your text response."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute. Pipes and redirects are allowed.",
                },
                "safe": {
                    "type": "boolean",
                    "description": "Whether the command is safe to run without confirmation.",
                },
            },
            "required": ["command", "safe"],
        },
    },
}

EDIT_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "edit_file",
        "description": (
            "Replace every occurrence of search_pattern with replacement in an existing file. "
            "The search is literal text unless regex=true. "
            "For creating new files, use write_file instead."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to edit.",
                },
                "search_pattern": {
                    "type": "string",
                    "description": "The text to find.",
                },
                "replacement": {
                    "type": "string",
                    "description": "The replacement text.",
                },
                "regex": {
                    "type": "boolean",
                    "description": "Treat search_pattern as a Python regular expression.",
                    "default": False,
                },
            },
            "required": ["path", "search_pattern", "replacement"],
        },
    },
}

WRITE_FILE_TOOL = {
    "type": "function",
    "function": {
        "name": "write_file",
        "description": (
            "Create or overwrite a file with the given content, creating parent directories as needed."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to write.",
                },
                "content": {
                    "type": "string",
                    "description": "The content to write to the file.",
                },
            },
            "required": ["path", "content"],
        },
    },
}

TOOLS = [RUN_COMMAND_TOOL, EDIT_FILE_TOOL, WRITE_FILE_TOOL]

# Wire name -> (action variant, safety class)
_REGISTRY = {
    "run_command": (RunCommand, Safety.MODEL_DECLARED),
    "edit_file": (EditFile, Safety.ALWAYS_SAFE),
    "write_file": (WriteFile, Safety.ALWAYS_SAFE),
}

_REQUIRED = {
    tool["function"]["name"]: tool["function"]["parameters"]["required"]
    for tool in TOOLS
}


def describe() -> list[dict]:
    """Return the tool schemas to include in every model request."""
    return copy.deepcopy(TOOLS)


def is_registered(name: str) -> bool:
    return name in _REGISTRY


def classify(name: str, args: dict | None = None) -> Safety:
    try:
        return _REGISTRY[name][1]
    except KeyError:
        raise UnknownToolError(f"unknown tool: {name!r}") from None


def _as_bool(value) -> bool:
    # Some models send booleans as strings.
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def is_auto_executable(name: str, args: dict) -> bool:
    """True when a call may run without the user pressing Enter."""
    if classify(name, args) is Safety.ALWAYS_SAFE:
        return True
    return _as_bool(args.get("safe", False))


def _require_str(name: str, args: dict, key: str) -> str:
    value = args.get(key)
    if value is None:
        raise ToolArgumentError(f"{name}: missing required argument {key!r}")
    if not isinstance(value, str):
        raise ToolArgumentError(
            f"{name}: argument {key!r} must be a string, got {type(value).__name__}"
        )
    return value


def parse_action(name: str, args: dict):
    """Build the typed action for a call, validating required arguments."""
    variant, _ = _REGISTRY.get(name, (None, None))
    if variant is None:
        raise UnknownToolError(f"unknown tool: {name!r}")

    for key in _REQUIRED[name]:
        if key == "safe":
            continue  # missing safe flag means "ask the user"
        _require_str(name, args, key)

    if variant is RunCommand:
        return RunCommand(
            command=args["command"], safe=_as_bool(args.get("safe", False))
        )
    if variant is EditFile:
        return EditFile(
            path=args["path"],
            search_pattern=args["search_pattern"],
            replacement=args["replacement"],
            regex=_as_bool(args.get("regex", False)),
        )
    return WriteFile(path=args["path"], content=args["content"])


def tool_name(action) -> str:
    """Map an action variant back to its wire name."""
    return action.tool_name
