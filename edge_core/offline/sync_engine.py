# =============================================================================
# edge_core/offline/sync_engine.py
# Sync Queue Manager
# =============================================================================
"""
SyncEngine - Persists deferred mutations and replays them against the
remote store once connectivity returns.

Features:
- Durable FIFO-within-priority queue in the local database
- Single drain per instance (second trigger is a no-op)
- Batched replay with a bounded retry count
- Permanently failed tasks kept for inspection and re-queueing
- sync_completed / sync_failed notifications
"""

from __future__ import annotations
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional
import logging

from edge_core.errors import (
    EdgeCoreError,
    NetworkError,
    RetryExhaustedError,
    handle_error,
)
from edge_core.logging import LogContext
from edge_core.offline import notifications
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import HttpRequest, SyncTask

logger = logging.getLogger(__name__)

API_REQUEST = "api_request"

# Path fragment -> task priority (higher drains first)
PRIORITY_RULES = (
    ("/api/orders", 3),
    ("/api/inventory", 2),
)
DEFAULT_PRIORITY = 1


def priority_for(url: str) -> int:
    """Orders outrank inventory, which outranks everything else."""
    for fragment, priority in PRIORITY_RULES:
        if fragment in url:
            return priority
    return DEFAULT_PRIORITY


def spawn_drain(func: Callable[[], Any]) -> None:
    threading.Thread(target=func, daemon=True, name="SyncDrain").start()


@dataclass
class DrainResult:
    """Outcome of one pass over the queue."""
    successful: int = 0
    failed: int = 0
    retried: int = 0
    remaining: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncQueueStatus:
    """Queue counters for status displays."""
    count: int = 0
    pending: int = 0
    failed: int = 0
    is_draining: bool = False
    last_drain_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncEngine:
    """
    Sync Queue Manager.

    Usage:
        sync = SyncEngine(store, remote, notifier=notifier)
        sync.enqueue_request(HttpRequest("/api/orders", "POST", body=b"{}"))
        result = sync.drain()
    """

    def __init__(
        self,
        store: LocalDatabase,
        remote: Any,
        notifier: Optional[notifications.Notifier] = None,
        max_retries: int = 3,
        batch_size: int = 10,
        is_online: Optional[Callable[[], bool]] = None,
        scheduler: Callable[[Callable[[], Any]], None] = spawn_drain,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Persistent store holding the queue
            remote: Object with ``fetch(HttpRequest) -> HttpResponse``
            notifier: Receives sync_completed / sync_failed events
            max_retries: Attempts before a task is dropped as failed
            batch_size: Tasks dispatched per batch
            is_online: Connectivity check consulted by ``request_drain``
            scheduler: Runs a deferred drain (daemon thread by default)
            clock: Time source for task creation and drain bookkeeping
        """
        self.store = store
        self.remote = remote
        self.notifier = notifier
        self.max_retries = max_retries
        self.batch_size = batch_size
        self._is_online = is_online or (lambda: True)
        self._scheduler = scheduler
        self._clock = clock

        self._drain_lock = threading.Lock()
        self._is_draining = False
        self._last_drain_at: Optional[float] = None

    @property
    def is_draining(self) -> bool:
        return self._is_draining

    def _notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.notifier is not None:
            self.notifier.notify(event_type, payload)

    # =========================================================================
    # QUEUEING
    # =========================================================================

    def enqueue(self, task: SyncTask) -> SyncTask:
        """Persist a task and try to drain right away if online."""
        if task.sequence is None:
            task.sequence = self.store.next_sequence(LocalDatabase.SYNC_QUEUE)
        self.store.put(LocalDatabase.SYNC_QUEUE, task.to_record())
        logger.info(f"Queued sync task {task.id} ({task.type}, priority {task.priority})")
        self.request_drain()
        return task

    def enqueue_request(self, request: HttpRequest, priority: Optional[int] = None) -> SyncTask:
        """Queue a failed outbound request for replay."""
        task = SyncTask(
            type=API_REQUEST,
            payload=request.to_payload(),
            priority=priority if priority is not None else priority_for(request.url),
            created_at=self._clock(),
        )
        return self.enqueue(task)

    def request_drain(self) -> bool:
        """Schedule a drain if online; otherwise leave it to the next trigger."""
        if not self._is_online():
            logger.debug("Offline, drain deferred")
            return False
        self._scheduler(self.drain)
        return True

    def pending_tasks(self) -> List[SyncTask]:
        """Queued tasks in dispatch order."""
        tasks = [SyncTask.from_record(r) for r in self.store.get_all(LocalDatabase.SYNC_QUEUE)]
        return sorted(tasks, key=lambda t: t.sort_key)

    def failed_tasks(self) -> List[Dict[str, Any]]:
        return self.store.get_all(LocalDatabase.FAILED_TASKS)

    # =========================================================================
    # DRAIN
    # =========================================================================

    def drain(self) -> Optional[DrainResult]:
        """
        Replay every queued task once, in priority order.

        Returns:
            DrainResult, or None if a drain was already running
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress, skipping")
            return None

        self._is_draining = True
        try:
            result = DrainResult()
            tasks = self.pending_tasks()
            if tasks:
                with LogContext(logger, f"Draining {len(tasks)} sync tasks"):
                    for start in range(0, len(tasks), self.batch_size):
                        for task in tasks[start:start + self.batch_size]:
                            self._process(task, result)

            result.remaining = self.store.count(LocalDatabase.SYNC_QUEUE)
            self._last_drain_at = self._clock()
            self._notify(notifications.SYNC_COMPLETED, {
                "successful": result.successful,
                "failed": result.failed,
                "remaining": result.remaining,
            })
            if tasks:
                logger.info(
                    f"Sync complete: {result.successful} success, "
                    f"{result.failed} failed, {result.remaining} remaining"
                )
            return result

        finally:
            self._is_draining = False
            self._drain_lock.release()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no drain is running; False if ``timeout`` elapsed first."""
        acquired = self._drain_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._drain_lock.release()
        return acquired

    def _replay(self, task: SyncTask):
        request = HttpRequest.from_payload(task.payload)
        return self.remote.fetch(request)

    def _process(self, task: SyncTask, result: DrainResult) -> None:
        try:
            response = self._replay(task)
            if response.ok:
                self._complete(task, result)
                return
            error = f"HTTP {response.status}"
        except NetworkError as e:
            error = str(e)
        except Exception as e:
            logger.error(f"Error replaying sync task {task.id}: {e}")
            error = str(e)

        task.retry_count += 1
        task.last_error = error
        try:
            if task.retry_count >= self.max_retries:
                self._fail_permanently(task)
                result.failed += 1
            else:
                self.store.put(LocalDatabase.SYNC_QUEUE, task.to_record())
                result.retried += 1
                logger.warning(
                    f"Sync task {task.id} failed (attempt {task.retry_count}/"
                    f"{self.max_retries}): {error}"
                )
        except EdgeCoreError as e:
            handle_error(e, notifier=self.notifier)

    def _complete(self, task: SyncTask, result: DrainResult) -> None:
        # Delivered: a failed delete must not count against the retry bound.
        result.successful += 1
        try:
            self.store.delete(LocalDatabase.SYNC_QUEUE, task.id)
        except EdgeCoreError as e:
            handle_error(
                e,
                notifier=self.notifier,
                user_message=f"Could not remove delivered sync task {task.id}",
            )

    def _fail_permanently(self, task: SyncTask) -> None:
        record = task.to_record()
        record["failed_at"] = self._clock()
        self.store.move(LocalDatabase.SYNC_QUEUE, LocalDatabase.FAILED_TASKS, record)

        handle_error(
            RetryExhaustedError(
                f"Sync task {task.id} dropped after {task.retry_count} attempts",
                task_id=task.id,
                retries=task.retry_count,
                last_error=task.last_error,
            ),
            notifier=self.notifier,
        )
        self._notify(notifications.SYNC_FAILED, {"task": record, "error": task.last_error})

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def retry_failed(self) -> int:
        """Move permanently failed tasks back into the queue with a fresh budget."""
        records = self.failed_tasks()
        for record in records:
            task = SyncTask.from_record(record)
            task.retry_count = 0
            task.last_error = None
            self.store.move(LocalDatabase.FAILED_TASKS, LocalDatabase.SYNC_QUEUE, task.to_record())
        if records:
            logger.info(f"Re-queued {len(records)} failed sync tasks")
            self.request_drain()
        return len(records)

    def clear(self) -> int:
        """Drop every queued task. The only way to cancel queued work."""
        removed = self.store.clear(LocalDatabase.SYNC_QUEUE)
        logger.info(f"Cleared {removed} queued sync tasks")
        return removed

    def clear_failed(self) -> int:
        return self.store.clear(LocalDatabase.FAILED_TASKS)

    def status(self) -> SyncQueueStatus:
        tasks = self.pending_tasks()
        return SyncQueueStatus(
            count=len(tasks),
            pending=sum(1 for t in tasks if t.retry_count == 0),
            failed=self.store.count(LocalDatabase.FAILED_TASKS),
            is_draining=self._is_draining,
            last_drain_at=self._last_drain_at,
        )
