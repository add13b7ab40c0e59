"""Background writer that appends cost entries outside the request path."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable

from seo_aggregator.storage.base import SeoStorage
from seo_aggregator.storage.models import CostEntry

logger = logging.getLogger(__name__)

_STOP = object()


class CostLedgerWriter:
    """Bounded queue drained by one daemon thread.

    Each entry is retried up to ``max_retries`` times and then moved to the
    dead-letter table. Entries rejected because the queue is full go to the
    dead-letter table immediately. Nothing here ever raises into the caller
    of :meth:`submit`.
    """

    def __init__(
        self,
        storage: SeoStorage,
        *,
        queue_size: int = 1000,
        max_retries: int = 3,
        backoff_s: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._sleep = sleep
        self._queue: queue.Queue[object] = queue.Queue(maxsize=queue_size)
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self.written = 0
        self.dead_lettered = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run,
                name="cost-ledger-writer",
                daemon=True,
            )
            self._thread.start()
        logger.info("event=ledger_writer_started")

    def stop(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout)
        self._thread = None
        logger.info("event=ledger_writer_stopped pending=%s", self._pending)

    def submit(self, entries: Iterable[CostEntry]) -> int:
        accepted = 0
        for entry in entries:
            with self._lock:
                self._pending += 1
            try:
                self._queue.put_nowait(entry)
            except queue.Full:
                logger.warning(
                    "event=ledger_queue_full user_id=%s task_id=%s",
                    entry.user_id,
                    entry.task_id,
                )
                self._dead_letter(entry, error="ledger queue full", attempts=0)
                self._done()
                continue
            accepted += 1
        return accepted

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every submitted entry is written or dead-lettered."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._queue.task_done()
                return
            try:
                self._write(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()
                self._done()

    def _write(self, entry: CostEntry) -> None:
        last_error: Exception | None = None
        attempts = 0
        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            try:
                self.storage.append_cost(entry)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "event=ledger_append_failed task_id=%s attempt=%s error=%s",
                    entry.task_id,
                    attempts,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    self._sleep(self.backoff_s)
                continue
            with self._lock:
                self.written += 1
            self._bump_rollup(entry)
            return

        self._dead_letter(entry, error=str(last_error), attempts=attempts)

    def _bump_rollup(self, entry: CostEntry) -> None:
        try:
            self.storage.bump_dashboard_rollup(entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event=dashboard_rollup_failed user_id=%s error=%s", entry.user_id, exc
            )

    def _dead_letter(self, entry: CostEntry, *, error: str, attempts: int) -> None:
        with self._lock:
            self.dead_lettered += 1
        try:
            self.storage.record_dead_letter(entry, error=error, attempts=attempts)
        except Exception:  # noqa: BLE001
            logger.exception(
                "event=ledger_dead_letter_failed user_id=%s task_id=%s",
                entry.user_id,
                entry.task_id,
            )
            return
        logger.error(
            "event=ledger_dead_lettered user_id=%s task_id=%s attempts=%s error=%s",
            entry.user_id,
            entry.task_id,
            attempts,
            error,
        )

    def _done(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending <= 0:
                self._pending = 0
                self._idle.notify_all()
