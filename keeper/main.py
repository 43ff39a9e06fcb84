import os
import sys
import logging
from typing import List, Optional

from keeper.log.setup import setup_logging
from keeper.console import execute_command, load_manager_class, print_help

log = logging.getLogger("console")


def main(argv: Optional[List[str]] = None) -> int:
    """
    The command-line entry point.

        keeper <module:ManagerClass> <command> [--force] [--daemon] [--verbose]

    :param argv: Arguments without the program name. Defaults to sys.argv[1:].
    :return: The process exit code.
    """
    args = list(sys.argv[1:] if argv is None else argv)

    verbose = "--verbose" in args
    if verbose:
        args.remove("--verbose")
    daemon = "--daemon" in args
    if daemon:
        args.remove("--daemon")

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    if not args or args[0].lower() in ("help", "-h", "--help"):
        print_help()
        return 0
    if len(args) < 2:
        print_help()
        return os.EX_USAGE

    target, command, command_args = args[0], args[1].lower(), args[2:]
    try:
        manager_class = load_manager_class(target)
    except (ImportError, ValueError) as e:
        log.error(f"Could not load supervisor '{target}': {e}")
        return os.EX_USAGE

    manager = manager_class()
    if daemon:
        manager.set_daemon(True)

    return execute_command(manager, command, command_args)


if __name__ == "__main__":
    sys.exit(main())
