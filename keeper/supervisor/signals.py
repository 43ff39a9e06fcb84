import signal
import select
import socket
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

log = logging.getLogger(__name__)

SignalHandler = Callable[[], None]


class SignalDispatcher:
    """
    Maps signals to handlers and runs them from a single dispatch loop.

    The OS-level handler only queues the signal number and the wakeup
    descriptor interrupts `wait()`. Handlers therefore run one at a time, in
    delivery order, outside of signal context.
    """

    def __init__(self) -> None:
        self.handlers: Dict[int, SignalHandler] = {}
        self.pending: Deque[int] = deque()
        self.installed = False
        self._previous: Dict[int, Any] = {}
        self._previous_wakeup_fd = -1
        self._reader: Optional[socket.socket] = None
        self._writer: Optional[socket.socket] = None

    def bind(self, sig: int, handler: SignalHandler) -> None:
        """
        Binds a handler to a signal. If the dispatcher is already installed,
        the OS-level handler is installed right away.
        """
        self.handlers[sig] = handler
        if self.installed:
            self._install_one(sig)

    def install(self) -> None:
        """Installs the OS-level handlers for every bound signal and the wakeup descriptor."""
        if self.installed:
            return
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)
        self._previous_wakeup_fd = signal.set_wakeup_fd(self._writer.fileno(), warn_on_full_buffer=False)
        self.installed = True
        for sig in self.handlers:
            self._install_one(sig)

    def _install_one(self, sig: int) -> None:
        previous = signal.signal(sig, self._enqueue)
        self._previous.setdefault(sig, previous)
        log.debug(f"Installed handler for {signal.Signals(sig).name}.")

    def uninstall(self) -> None:
        """Restores the signal dispositions and wakeup descriptor found at install time."""
        if not self.installed:
            return
        for sig, previous in self._previous.items():
            signal.signal(sig, signal.SIG_DFL if previous is None else previous)
        self._previous.clear()
        signal.set_wakeup_fd(self._previous_wakeup_fd)
        for sock in (self._reader, self._writer):
            if sock is not None:
                sock.close()
        self._reader = self._writer = None
        self.installed = False

    def release(self) -> None:
        """
        Drops the wakeup descriptors and queued signals inherited by a forked child.

        Dispositions are left alone; the child resets the ones it must not keep.
        """
        for sock in (self._reader, self._writer):
            if sock is not None:
                sock.close()
        self._reader = self._writer = None
        self._previous.clear()
        self.pending.clear()
        self.installed = False

    def _enqueue(self, signum: int, frame: Any) -> None:
        self.pending.append(signum)

    def dispatch(self, sig: int) -> None:
        """Runs the handler bound to a signal, if any."""
        handler = self.handlers.get(sig)
        if handler is None:
            log.debug(f"No handler bound for signal {sig}. Ignoring.")
            return
        log.debug(f"Dispatching {signal.Signals(sig).name}.")
        handler()

    def dispatch_pending(self) -> int:
        """
        Runs the handlers of all queued signals in delivery order.

        :return: The number of signals dispatched.
        """
        count = 0
        while self.pending:
            self.dispatch(self.pending.popleft())
            count += 1
        return count

    def wait(self, timeout: float) -> bool:
        """
        Blocks until a signal is queued or the timeout expires.

        :param timeout: Maximum number of seconds to block.
        :return: True if signals are waiting to be dispatched.
        """
        if self.pending or self._reader is None:
            return bool(self.pending)

        ready, _, _ = select.select([self._reader], [], [], timeout)
        if ready:
            self._drain_wakeup()
        return bool(self.pending)

    def _drain_wakeup(self) -> None:
        try:
            while self._reader.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass
