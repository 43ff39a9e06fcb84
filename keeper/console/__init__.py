"""
This module initializes the console package, exposing command execution,
manager loading, status display, settings editing and help output.
"""

from .process import execute_command, load_manager_class
from .handler import display_status, edit_settings, print_help

__all__ = ["execute_command", "load_manager_class", "display_status", "edit_settings", "print_help"]
