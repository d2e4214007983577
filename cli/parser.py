"""Command parser for CLI input."""

import shlex

from cli.models import (
    BackupCommand,
    CancelCommand,
    CommandRequest,
    ConnectCommand,
    DeleteCommand,
    InfoCommand,
    ReclaimCommand,
    RestoreCommand,
)


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL or the command line

    Returns:
        CommandRequest object (one of Backup/Restore/Cancel/Delete/Reclaim/Info/Connect)

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

    command_name = tokens[0].lower()

    if command_name == "backup":
        return _parse_backup(tokens[1:])
    elif command_name == "restore":
        return _parse_restore(tokens[1:])
    elif command_name == "cancel":
        return _parse_cancel(tokens[1:])
    elif command_name == "delete":
        return _parse_delete(tokens[1:])
    elif command_name == "reclaim":
        return _parse_reclaim(tokens[1:])
    elif command_name == "info":
        return _parse_info(tokens[1:])
    elif command_name == "connect":
        return _parse_connect(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ParseError(f"{name} must be an integer, got '{value}'")


def _parse_backup(args: list[str]) -> BackupCommand:
    """Parse 'backup <path> <replication_degree>' command."""
    if len(args) != 2:
        raise ParseError("backup requires exactly 2 arguments: <path> <replication_degree>")

    path, degree = args
    return BackupCommand(path=path, replication_degree=_parse_int(degree, "replication_degree"))


def _parse_restore(args: list[str]) -> RestoreCommand:
    """Parse 'restore <path> [content_id]' command."""
    if not 1 <= len(args) <= 2:
        raise ParseError("restore requires 1 or 2 arguments: <path> [content_id]")

    content_id = args[1] if len(args) > 1 else None
    return RestoreCommand(path=args[0], content_id=content_id)


def _parse_cancel(args: list[str]) -> CancelCommand:
    """Parse 'cancel <content_id>' command."""
    if len(args) != 1:
        raise ParseError("cancel requires exactly 1 argument: <content_id>")

    return CancelCommand(content_id=args[0])


def _parse_delete(args: list[str]) -> DeleteCommand:
    """Parse 'delete <path>' command."""
    if len(args) != 1:
        raise ParseError("delete requires exactly 1 argument: <path>")

    return DeleteCommand(path=args[0])


def _parse_reclaim(args: list[str]) -> ReclaimCommand:
    """Parse 'reclaim <max_kb>' command."""
    if len(args) != 1:
        raise ParseError("reclaim requires exactly 1 argument: <max_kb>")

    max_kb = _parse_int(args[0], "max_kb")
    if max_kb < 0:
        raise ParseError("max_kb must not be negative")
    return ReclaimCommand(max_kb=max_kb)


def _parse_info(args: list[str]) -> InfoCommand:
    """Parse 'info' command."""
    if args:
        raise ParseError("info takes no arguments")

    return InfoCommand()


def _parse_connect(args: list[str]) -> ConnectCommand:
    """Parse 'connect <host> <port>' command."""
    if len(args) != 2:
        raise ParseError("connect requires exactly 2 arguments: <host> <port>")

    host, port = args
    return ConnectCommand(host=host, port=_parse_int(port, "port"))
