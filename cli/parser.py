"""Command parser for CLI input."""

import shlex

from cli.models import (
    CommandRequest,
    DeleteCommand,
    ImportUrlCommand,
    ReplicateCommand,
    StatusCommand,
)

LOCAL_ALIASES = ("-", "local")


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object (one of Status/Replicate/ImportUrl/Delete)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "status":
        return _parse_status(tokens[1:])
    elif command_name == "replicate":
        return _parse_replicate(tokens[1:])
    elif command_name == "import-url":
        return _parse_import_url(tokens[1:])
    elif command_name == "delete":
        return _parse_delete(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _node(token: str) -> str:
    return "localhost" if token in LOCAL_ALIASES else token


def _targets(token: str) -> tuple[str, ...]:
    """Split a comma-separated target list."""
    targets = tuple(_node(t.strip()) for t in token.split(",") if t.strip())
    if not targets:
        raise ParseError("at least one target is required")
    if len(set(targets)) != len(targets):
        raise ParseError("target list contains duplicates")
    return targets


def _parse_status(args: list[str]) -> StatusCommand:
    """Parse 'status <target> [name]' command."""
    if not 1 <= len(args) <= 2:
        raise ParseError("status requires 1 or 2 arguments: <target> [name]")

    name = args[1] if len(args) > 1 else None
    return StatusCommand(target=_node(args[0]), name=name)


def _parse_replicate(args: list[str]) -> ReplicateCommand:
    """Parse 'replicate <source> <targets> <policy> [new-name]' command."""
    if not 3 <= len(args) <= 4:
        raise ParseError("replicate requires 3 or 4 arguments: <source> <targets> <policy> [new-name]")

    source = _node(args[0])
    targets = _targets(args[1])
    if source in targets:
        raise ParseError("source cannot also be a target")

    new_name = args[3] if len(args) > 3 else None
    return ReplicateCommand(source=source, targets=targets, policy=args[2], new_name=new_name)


def _parse_import_url(args: list[str]) -> ImportUrlCommand:
    """Parse 'import-url <url> <targets> <name>' command."""
    if len(args) != 3:
        raise ParseError("import-url requires exactly 3 arguments: <url> <targets> <name>")

    url, targets, name = args
    if "://" not in url:
        raise ParseError(f"not a URL: {url}")
    return ImportUrlCommand(url=url, targets=_targets(targets), name=name)


def _parse_delete(args: list[str]) -> DeleteCommand:
    """Parse 'delete <target> <policy>' command."""
    if len(args) != 2:
        raise ParseError("delete requires exactly 2 arguments: <target> <policy>")

    target, policy = args
    return DeleteCommand(target=_node(target), policy=policy)
