import time
import logging
from typing import TYPE_CHECKING, List, Optional

from keeper.config import MergedSettings, effective_settings
from keeper.supervisor import process_utils

if TYPE_CHECKING:
    from keeper.supervisor import ProcessManager

log = logging.getLogger(__name__)


def display_status(manager: "ProcessManager") -> bool:
    """
    Checks and displays the status of the running instance and its children.

    :param manager: The manager whose PID file is inspected.
    :return: True if a live instance was found.
    """
    stored_pid = manager.pid_file.read()
    if stored_pid is None:
        print(f"\n{manager.title} is STOPPED (No PID file found at {manager.pid_file.path}).\n")
        return False

    pid = manager.status()
    info = process_utils.describe_process(pid) if pid else {}
    if not info:
        print(f"\n{manager.title} is STOPPED (Stale PID file for PID {stored_pid}).")
        print("Run 'stop' to clean it up, or 'start' to overwrite it.\n")
        return False

    print(f"\n--- {manager.title} Status ---")
    if "cpu" in info:
        print(f"  - {info['name'] + ' (supervisor)':<32} : PID {pid:<8} | Status: {info['status'].upper()} | CPU: {info['cpu']:.1f}% | MEM: {info['memory_mb']:.1f} MB")
    else:
        print(f"  - {'supervisor':<32} : PID {pid:<8} | Status: {info['status'].upper()}")

    for child in info["children"]:
        print(f"  - {child['name']:<32} : PID {child['pid']:<8} | Status: {child['status'].upper()}")

    print(f"\nChildren: {len(info['children'])}  |  Checked at {time.strftime('%H:%M:%S')}")
    print("-" * 26 + "\n")
    return True


def edit_settings(args: List[str], settings: Optional[MergedSettings] = None) -> bool:
    """
    Shows the modifiable settings, or persists `NAME=VALUE` changes to the overrides file.

    Changes apply to instances started afterwards. Nothing is saved if any
    argument is malformed, names a protected setting or cannot be converted.

    :param args: `NAME=VALUE` assignments. Empty to only list the settings.
    :param settings: The settings to edit. Defaults to the effective settings.
    :return: True if the settings were listed or saved.
    """
    settings = settings or effective_settings
    if not args:
        print(f"\n--- Modifiable settings ({settings.OVERRIDES_JSON_PATH}) ---")
        for name in sorted(settings.MODIFIABLE_SETTINGS):
            print(f"  {name:<28} = {getattr(settings, name)}")
        print()
        return True

    updates = {}
    for arg in args:
        name, sep, value = arg.partition("=")
        if not sep or name not in settings.MODIFIABLE_SETTINGS:
            log.error(f"Expected NAME=VALUE with a modifiable setting name, got '{arg}'.")
            return False
        updates[name] = value

    original = {name: getattr(settings, name) for name in updates}
    if len(settings.apply_overrides(updates)) != len(updates):
        for name, value in original.items():
            setattr(settings, name, value)
        return False

    settings.save_overrides({name: getattr(settings, name) for name in settings.MODIFIABLE_SETTINGS})
    for name in updates:
        print(f"{name} = {getattr(settings, name)}")
    return True


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nUsage: keeper <module:ManagerClass> <command> [options]")
    print("\nAvailable commands:")
    print("  run | start            - Start the supervisor (fails if an instance is already running).")
    print("  restart [--force]      - Stop the running instance and start a new one.")
    print("                           With --force, start even if nothing is running.")
    print("  stop                   - Ask the running instance to terminate.")
    print("  status                 - Show the running instance and its children.")
    print("  config [NAME=VALUE...] - Show the modifiable settings, or save new values for them.")
    print("  help                   - Show this help message.")
    print("\nOptions:")
    print("  --daemon               - Detach from the terminal on start.")
    print("  --verbose              - Show DEBUG log output in the console.")
    print("\nSignals understood by a running instance:")
    print("  SIGTERM / SIGINT       - Terminate the supervisor and its children.")
    print("  SIGUSR1                - Reopen: replace every child with a fresh process.")
    print("  SIGUSR2                - Reload: forward the reload signal to every child.")
    print()
