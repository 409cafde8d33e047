"""CLI entry point."""

import os
import shlex
import sys

from common.logging_config import setup_logging
from cli.parser import ParseError, parse_command
from cli.repl import dispatch_command, repl_loop


def run_once(args: list[str]) -> int:
    """Execute a single command given on the command line and return the exit code."""
    try:
        cmd_obj = parse_command(shlex.join(args))
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    print(dispatch_command(cmd_obj))
    return 0


def main() -> None:
    """Entry point for CLI: one-shot when a command is given, REPL otherwise."""
    debug = '--debug' in sys.argv
    if debug:
        sys.argv.remove('--debug')
    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING')

    logger = setup_logging('cli', log_level=log_level)
    if debug:
        logger.info("Debug logging enabled")

    args = sys.argv[1:]
    logger.info("CLI starting...")
    try:
        if args:
            sys.exit(run_once(args))
        repl_loop()
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    main()
