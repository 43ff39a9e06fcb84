import os
import logging
import importlib
from typing import List, Type

from keeper.supervisor import ProcessManager
from keeper.config import effective_settings as config
from keeper.console.handler import display_status, edit_settings, print_help

log = logging.getLogger(__name__)


def load_manager_class(target: str) -> Type[ProcessManager]:
    """
    Imports a ProcessManager subclass from a 'package.module:ClassName' reference.

    :param target: The reference to import.
    :raises ValueError: If the reference is malformed or does not name a ProcessManager subclass.
    """
    module_name, _, class_name = target.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"Expected 'module:ClassName', got '{target}'.")

    module = importlib.import_module(module_name)
    manager_class = getattr(module, class_name, None)
    if not (isinstance(manager_class, type) and issubclass(manager_class, ProcessManager)):
        raise ValueError(f"'{target}' is not a ProcessManager subclass.")
    return manager_class


def execute_command(manager: ProcessManager, command: str, args: List[str]) -> int:
    """
    Executes a single command against a manager.

    Fatal outcomes (already running, nothing to restart, nothing to stop)
    propagate as KeeperExit with their exit code.

    :param manager: The manager to operate on.
    :param command: The command name (e.g., 'run', 'stop').
    :param args: Remaining command-line arguments.
    :return: The process exit code.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "run": manager.run,
        "start": manager.run,
        "restart": lambda: manager.restart(force="--force" in args),
        "stop": manager.stop,
        "status": lambda: display_status(manager),
        "config": lambda: edit_settings(args),
        "help": print_help,
    }

    if command not in command_map:
        log.error(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return os.EX_USAGE

    result = command_map[command]()
    if command == "status" and result is False:
        return config.EXIT_STATUS_NOT_RUNNING
    if command == "config" and result is False:
        return os.EX_USAGE
    return 0
