"""Interactive prompt for the policy replicator CLI."""

import os
import sys
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import FileHistory, InMemoryHistory

from cli.commands import (
    handle_delete,
    handle_import_url,
    handle_replicate,
    handle_status,
)
from cli.constants import (
    COMMANDS,
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.models import (
    DeleteCommand,
    ImportUrlCommand,
    ReplicateCommand,
    StatusCommand,
)
from cli.parser import ParseError, parse_command

HANDLERS = {
    StatusCommand: handle_status,
    ReplicateCommand: handle_replicate,
    ImportUrlCommand: handle_import_url,
    DeleteCommand: handle_delete,
}

HISTORY_PATH = Path.home() / '.policy-replicator' / 'history'


def clear_screen() -> None:
    os.system("cls" if sys.platform == "win32" else "clear")


def show_welcome() -> None:
    print(LOGO)
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


def dispatch_command(cmd_obj, client=None) -> str:
    """Run the handler registered for a parsed command."""
    handler = HANDLERS.get(type(cmd_obj))
    if handler is None:
        return f"Unknown command type: {type(cmd_obj)}"
    return handler(cmd_obj, client=client)


def _history():
    """Persistent history next to the config file, in memory when that is not writable."""
    try:
        HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
        HISTORY_PATH.touch(exist_ok=True)
    except OSError:
        return InMemoryHistory()
    return FileHistory(str(HISTORY_PATH))


def repl_loop() -> None:
    """Read commands until 'exit' or end of input."""
    session: PromptSession = PromptSession(
        completer=WordCompleter(COMMANDS, ignore_case=True),
        history=_history(),
        style=STYLE
    )

    clear_screen()
    show_welcome()

    while True:
        try:
            line = session.prompt([("class:prompt", PROMPT_TEXT)]).strip()
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break

        if not line:
            continue
        if line == "exit":
            print("Goodbye!")
            break
        if line == "help":
            print(HELP_TEXT)
            continue
        if line == "clear":
            clear_screen()
            show_welcome()
            continue

        try:
            print(dispatch_command(parse_command(line)))
        except ParseError as e:
            print(f"Error: {e}")
