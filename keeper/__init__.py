"""
Keeper: a single-instance supervisor for a daemon and its worker processes.
"""

from .process import Process
from .supervisor import ProcessManager, ProcessController, ChildProcessSpec, PidFile
from .exceptions import KeeperExit, SingletonConflict, OperationRejected, NoRunningInstance

__version__ = "0.1.0"

__all__ = [
    "Process",
    "ProcessManager",
    "ProcessController",
    "ChildProcessSpec",
    "PidFile",
    "KeeperExit",
    "SingletonConflict",
    "OperationRejected",
    "NoRunningInstance",
]
