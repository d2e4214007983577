"""REPL with prompt_toolkit for user interaction."""

import os
import sys
from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory

from cli.commands import (
    get_client,
    handle_backup,
    handle_cancel,
    handle_connect,
    handle_delete,
    handle_info,
    handle_reclaim,
    handle_restore,
)
from cli.completer import BackupCompleter
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
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
from cli.parser import ParseError, parse_command


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_welcome() -> None:
    """Clear the screen and print the logo and greeting."""
    clear_screen()
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


def dispatch_command(cmd_obj: CommandRequest) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd_obj, BackupCommand):
        return handle_backup(cmd_obj)
    elif isinstance(cmd_obj, RestoreCommand):
        return handle_restore(cmd_obj)
    elif isinstance(cmd_obj, CancelCommand):
        return handle_cancel(cmd_obj)
    elif isinstance(cmd_obj, DeleteCommand):
        return handle_delete(cmd_obj)
    elif isinstance(cmd_obj, ReclaimCommand):
        return handle_reclaim(cmd_obj)
    elif isinstance(cmd_obj, InfoCommand):
        return handle_info(cmd_obj)
    elif isinstance(cmd_obj, ConnectCommand):
        return handle_connect(cmd_obj)
    else:
        return f"Unknown command type: {type(cmd_obj)}"


def prompt_fragments() -> list:
    """Prompt naming the peer gateway the CLI currently talks to."""
    target = get_client().config.get_base_url().split("://", 1)[-1]
    return [
        ("class:prompt", PROMPT_TEXT.rstrip("> ")),
        ("class:command", f"[{target}]"),
        ("class:prompt", "> "),
    ]


def repl_loop() -> None:
    """Read commands until 'exit' or end of input."""
    session: PromptSession = PromptSession(
        completer=BackupCompleter(), history=InMemoryHistory(), style=STYLE
    )
    show_welcome()

    while True:
        try:
            line = session.prompt(prompt_fragments).strip()
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            return

        if not line:
            continue
        keyword = line.split()[0].lower()
        if keyword == "exit":
            print("Goodbye!")
            return
        if keyword == "help":
            print(HELP_TEXT)
            continue
        if keyword == "clear":
            show_welcome()
            continue

        try:
            print(dispatch_command(parse_command(line)))
        except ParseError as e:
            print(f"Error: {e}")
