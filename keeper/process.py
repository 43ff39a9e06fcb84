import abc
from typing import Optional


class Process(abc.ABC):
    """
    An executable unit of work.

    The supervisor runs itself through `run()`, and the process controller
    calls `run()` on each child inside the forked child process. Returning
    from `run()` ends the child with status 0.
    """

    #: Optional process title suffix, applied with setproctitle once forked.
    title: Optional[str] = None

    @abc.abstractmethod
    def run(self) -> None:
        """Performs the work of this process."""
