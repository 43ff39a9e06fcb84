"""
The Supervisor package.
Manages the lifecycle of a daemon and its child processes.

This package contains the central ProcessManager class and its helper modules,
which together handle the singleton check, the PID file, signal dispatch, and
the spawning, reaping and stopping of child processes.
"""
from .supervisor import ProcessManager, State
from .controller import ChildProcessSpec, ProcessController
from .persistence import PidFile

__all__ = ['ProcessManager', 'State', 'ProcessController', 'ChildProcessSpec', 'PidFile']
