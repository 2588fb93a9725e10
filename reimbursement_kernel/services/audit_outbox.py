"""
AuditOutbox -- best-effort propagation of audit entries to a durable sink.

Responsibility:
    Phase 2 of the two-phase audit contract.  Entries already appended to the
    authoritative ``AuditLedger`` are queued here and delivered to an
    ``AuditSink`` by a background worker thread, with exponential backoff and
    jitter between attempts (``tenacity``).

Architecture position:
    Kernel > Services -- attached to an AuditLedger; the ledger calls
    ``enqueue`` after each append.

Invariants enforced:
    - ``enqueue`` never blocks and never raises: a full queue drops the
      entry with a warning.
    - A delivery that still fails after the last attempt is logged
      (``audit_sink_delivery_failed``) and dropped.  The authoritative
      ledger copy is unaffected.
    - Entries are delivered in enqueue order by a single worker.
"""

from __future__ import annotations

import json
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from reimbursement_kernel.domain.audit import AuditLogEntry
from reimbursement_kernel.logging_config import get_logger

logger = get_logger("services.audit_outbox")

_STOP = object()


@runtime_checkable
class AuditSink(Protocol):
    """Durable/search sink for audit entries.  May fail transiently."""

    def write(self, entry: AuditLogEntry) -> None: ...


class JsonLinesAuditSink:
    """Appends each entry's wire form as one JSON line to a file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditLogEntry) -> None:
        line = json.dumps(entry.to_wire(), sort_keys=True, separators=(",", ":"))
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    entry = retry_state.args[0] if retry_state.args else None
    wait_time = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "audit_sink_delivery_retry",
        extra={
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(float(wait_time), 3),
            "entry_id": getattr(entry, "entry_id", None),
            "error": str(exc) if exc else None,
            "error_type": type(exc).__name__ if exc else None,
        },
    )


class AuditOutbox:
    """
    Queue plus background worker delivering audit entries to a sink.

    Usage:
        outbox = AuditOutbox(JsonLinesAuditSink("audit.jsonl"))
        outbox.start()
        ledger = AuditLedger(store, clock, outbox=outbox)
        ...
        outbox.stop()           # drains the queue first
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        max_attempts: int = 5,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
        max_queue_size: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if max_delay <= 0:
            raise ValueError("max_delay must be > 0")

        self._sink = sink
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._worker: threading.Thread | None = None
        self._stop_sent = False
        self._stats_lock = threading.Lock()
        self._delivered = 0
        self._failed = 0
        self._dropped = 0

    # Counters

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def failed_count(self) -> int:
        return self._failed

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    # Producer side

    def enqueue(self, entry: AuditLogEntry) -> None:
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            with self._stats_lock:
                self._dropped += 1
            logger.warning(
                "audit_outbox_full",
                extra={"entry_id": entry.entry_id, "seq": entry.seq},
            )

    # Delivery

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(
                initial=self._base_delay,
                max=self._max_delay,
                jitter=self._base_delay,
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    def deliver(self, entry: AuditLogEntry) -> bool:
        """
        Deliver one entry, retrying with backoff.

        Returns True on success.  On exhaustion logs
        ``audit_sink_delivery_failed`` and returns False; never raises.
        """
        try:
            self._retrying()(self._sink.write, entry)
        except Exception as exc:
            with self._stats_lock:
                self._failed += 1
            logger.error(
                "audit_sink_delivery_failed",
                extra={
                    "entry_id": entry.entry_id,
                    "seq": entry.seq,
                    "claim_id": entry.claim_id,
                    "attempts": self._max_attempts,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False
        with self._stats_lock:
            self._delivered += 1
        return True

    def drain(self) -> int:
        """Deliver everything queued on the calling thread.  Returns count."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            try:
                if item is not _STOP:
                    self.deliver(item)
                    count += 1
            finally:
                self._queue.task_done()

    # Worker lifecycle

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_sent = False
        self._worker = threading.Thread(
            target=self._run, name="audit-outbox", daemon=True,
        )
        self._worker.start()
        logger.info("audit_outbox_started")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.deliver(item)
            finally:
                self._queue.task_done()

    def flush(self, timeout: float | None = None) -> bool:
        """
        Wait until every queued entry has been attempted.

        Without a running worker the queue is drained on the calling thread.
        Returns False if ``timeout`` expired first.
        """
        if not self.is_running:
            self.drain()
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, drain: bool = True, timeout: float | None = None) -> None:
        """
        Stop the worker.  With ``drain`` pending entries are delivered first.

        If the worker is still busy when ``timeout`` expires it is kept, so
        ``start`` does not spawn a second consumer beside it.
        """
        if self._worker is None:
            if drain:
                self.drain()
            return
        if drain:
            self.flush(timeout)
        if not self._stop_sent:
            self._queue.put(_STOP)
            self._stop_sent = True
        self._worker.join(timeout)
        if self._worker.is_alive():
            # still delivering; it exits at the stop marker
            logger.warning("audit_outbox_stop_timed_out", extra={"pending": self.pending})
            return
        self._worker = None
        logger.info(
            "audit_outbox_stopped",
            extra={
                "delivered": self._delivered,
                "failed": self._failed,
                "dropped": self._dropped,
            },
        )
