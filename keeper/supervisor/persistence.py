import os
import logging
from pathlib import Path
from typing import Optional, Union

log = logging.getLogger(__name__)


class PidFile:
    """
    Persists the decimal process id of the running supervisor.

    Reading never checks liveness; that is the singleton check's job.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).absolute()

    def __repr__(self) -> str:
        return f"PidFile({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Optional[int]:
        """
        Reads the PID file from disk and returns its contents.

        :return: The stored process id, or None if the file is missing or its content is unusable.
        """
        try:
            content = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except (IOError, OSError) as e:
            log.warning(f"Could not read PID file '{self.path}': {e}")
            return None

        try:
            pid = int(content)
        except ValueError:
            log.warning(f"PID file '{self.path}' holds unparsable content {content!r}.")
            return None
        return pid if pid > 0 else None

    def write(self, pid: int) -> None:
        """
        Atomically writes a process id to the PID file, replacing any previous content.

        :param pid: The process id to persist.
        :raises OSError: If the file or its directory cannot be written.
        """
        temp_pid_path = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_pid_path.write_text(f"{pid}\n")
            temp_pid_path.replace(self.path)
        except (IOError, OSError) as e:
            log.error(f"Failed to write PID file '{self.path}': {e}")
            raise
        finally:
            if temp_pid_path.exists():
                temp_pid_path.unlink(missing_ok=True)
        log.debug(f"Wrote PID {pid} to '{self.path}'.")

    def clear(self) -> None:
        """Removes the PID file. Does nothing if it is already gone."""
        self.path.unlink(missing_ok=True)
        log.debug(f"Cleared PID file '{self.path}'.")
