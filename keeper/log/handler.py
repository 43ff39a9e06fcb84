import os
import sys
import socket
import logging
import threading
import requests
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from keeper.config import effective_settings as config

LOKI_PUSH_PATH = "/loki/api/v1/push"


class LokiHandler(logging.Handler):
    """
    Ships log records to Grafana Loki.

    Records are queued and pushed in batches, either when `batch_size` is
    reached or every LOG_BUFFER_FLUSH_INTERVAL seconds from a daemon thread.
    Each process of the tree labels its own stream with its pid; after a fork
    the child starts over with an empty queue and its own flush thread.
    """

    def __init__(self, url: str, org_id: Optional[str] = None, batch_size: int = 200):
        """
        :param url: Base URL of the Loki server.
        :param org_id: Tenant, sent as the 'X-Scope-OrgID' header.
        :param batch_size: Number of queued records that triggers an immediate push.
        """
        super().__init__()
        self.push_url = url.rstrip("/") + LOKI_PUSH_PATH
        self.batch_size = batch_size
        self.interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.headers = {"Content-Type": "application/json"}
        if org_id:
            self.headers["X-Scope-OrgID"] = org_id
        self.host = socket.gethostname() or "unknown-host"

        self.queue: Deque[Dict[str, Any]] = deque()
        self.queue_lock = threading.Lock()
        self._spawn_flusher()
        os.register_at_fork(after_in_child=self._reinit_in_child)

    #* --- Background Flushing ---
    def _spawn_flusher(self) -> None:
        self.stopped = threading.Event()
        self.flusher = threading.Thread(target=self._flush_loop, name="LokiFlushThread", daemon=True)
        self.flusher.start()

    def _reinit_in_child(self) -> None:
        # The parent's lock may be held and its thread does not exist here.
        if self.stopped.is_set():
            return
        self.queue_lock = threading.Lock()
        self.queue = deque()
        self._spawn_flusher()

    def _flush_loop(self) -> None:
        while not self.stopped.wait(self.interval):
            self.flush()
        self.flush()

    #* --- Record Handling ---
    def _to_stream(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Converts a record into a single-value Loki stream."""
        labels = {
            "job": "keeper",
            "level": record.levelname.lower(),
            "hostname": self.host,
            "logger": record.name,
            "pid": str(record.process),
        }
        timestamp_ns = str(int(record.created * 1e9))
        return {"stream": labels, "values": [[timestamp_ns, self.format(record)]]}

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = self._to_stream(record)
        except Exception:
            self.handleError(record)
            return

        batch = None
        with self.queue_lock:
            self.queue.append(stream)
            if len(self.queue) >= self.batch_size:
                batch = self._take_batch()
        if batch:
            self._push(batch)

    def _take_batch(self) -> List[Dict[str, Any]]:
        """Empties the queue. The caller holds `queue_lock`."""
        batch = list(self.queue)
        self.queue.clear()
        return batch

    def _push(self, batch: List[Dict[str, Any]]) -> None:
        """Posts a batch to Loki. Failures are reported on stderr and the batch is dropped."""
        try:
            response = requests.post(self.push_url, json={"streams": batch}, headers=self.headers, timeout=5)
        except requests.RequestException as e:
            print(f"CRITICAL: Could not push {len(batch)} log records to Loki: {e}", file=sys.stderr)
            return
        if response.status_code != 204:
            print(f"ERROR: Loki rejected push with status {response.status_code}: {response.text}", file=sys.stderr)

    def flush(self) -> None:
        with self.queue_lock:
            batch = self._take_batch()
        if batch:
            self._push(batch)

    def close(self) -> None:
        """Stops the flush thread after a final push of everything still queued."""
        self.stopped.set()
        if self.flusher.is_alive():
            self.flusher.join(timeout=self.interval + 2)
        super().close()
