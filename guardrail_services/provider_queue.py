"""
ProviderQueue / ProviderRegistry -- bounded, observable provider calls.

Contract:
    Calls to external providers (quotes, fills) are funneled through a
    per-provider queue with bounded concurrency and a bounded backlog.  The
    queue is an explicit component: it is constructed with injected
    settings, must be ``start()``-ed before use, and is ``stop()``-ed on
    shutdown.  The registry is an ordinary object owned by whoever wires the
    application; there is no module-level instance.

Invariants enforced:
    - submit() on a stopped queue, or with a full backlog, raises
      ProviderQueueRejectedError and never runs the task.
    - call() raises ProviderTimeoutError, never a bare TimeoutError.
    - Telemetry counters (queued, succeeded, failed, rejected) are updated
      under a lock and logged per task.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, TypeVar

from guardrail_config.schema import ProviderQueueSettings
from guardrail_kernel.exceptions import ProviderQueueRejectedError, ProviderTimeoutError
from guardrail_kernel.logging_config import get_logger

logger = get_logger("services.provider_queue")

T = TypeVar("T")


@dataclass(frozen=True)
class QueueTelemetry:
    queued: int
    in_flight: int
    succeeded: int
    failed: int
    rejected: int


class ProviderQueue:
    """Bounded worker pool for one provider."""

    def __init__(self, provider_id: str, settings: ProviderQueueSettings):
        self._provider_id = provider_id
        self._settings = settings
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._pending = 0
        self._queued = 0
        self._succeeded = 0
        self._failed = 0
        self._rejected = 0

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def is_running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self._settings.max_concurrency,
                thread_name_prefix=f"provider-{self._provider_id}",
            )
        logger.info(
            "provider_queue_started",
            extra={
                "provider_id": self._provider_id,
                "max_concurrency": self._settings.max_concurrency,
                "max_queue_size": self._settings.max_queue_size,
            },
        )

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("provider_queue_stopped", extra={"provider_id": self._provider_id})

    def submit(self, task: Callable[..., T], *args: Any) -> Future[T]:
        """Enqueue ``task(*args)``; raises ProviderQueueRejectedError when not accepted."""
        with self._lock:
            if self._executor is None:
                reason = "queue is not running"
            elif self._pending >= self._settings.max_queue_size:
                reason = "queue is full"
            else:
                reason = None
            if reason is not None:
                self._rejected += 1
            else:
                self._pending += 1
                self._queued += 1
                executor = self._executor

        if reason is not None:
            logger.warning(
                "provider_task_rejected",
                extra={"provider_id": self._provider_id, "reason": reason},
            )
            raise ProviderQueueRejectedError(self._provider_id, reason)

        logger.debug("provider_task_queued", extra={"provider_id": self._provider_id})
        return executor.submit(self._run, task, *args)

    def call(self, task: Callable[..., T], *args: Any) -> T:
        """Submit and wait for the result, bounded by call_timeout_seconds.

        Raises ProviderTimeoutError when the result does not arrive in time.
        A task that already started keeps running on its worker.
        """
        future = self.submit(task, *args)
        timeout = self._settings.call_timeout_seconds
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "provider_task_timed_out",
                extra={"provider_id": self._provider_id, "timeout_seconds": timeout},
            )
            raise ProviderTimeoutError(self._provider_id, timeout) from None

    def telemetry(self) -> QueueTelemetry:
        with self._lock:
            return QueueTelemetry(
                queued=self._queued,
                in_flight=self._pending,
                succeeded=self._succeeded,
                failed=self._failed,
                rejected=self._rejected,
            )

    def _run(self, task: Callable[..., T], *args: Any) -> T:
        started = time.monotonic()
        try:
            result = task(*args)
        except Exception as exc:
            with self._lock:
                self._pending -= 1
                self._failed += 1
            logger.warning(
                "provider_task_failed",
                extra={
                    "provider_id": self._provider_id,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "error": str(exc),
                },
            )
            raise
        with self._lock:
            self._pending -= 1
            self._succeeded += 1
        logger.debug(
            "provider_task_succeeded",
            extra={
                "provider_id": self._provider_id,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return result


class ProviderRegistry:
    """
    Registered providers and their queues.

    Use as a context manager to start every queue on entry and stop them on
    exit.
    """

    def __init__(self, settings: ProviderQueueSettings):
        self._settings = settings
        self._providers: dict[str, Any] = {}
        self._queues: dict[str, ProviderQueue] = {}

    def register(self, provider: Any) -> ProviderQueue:
        provider_id = provider.provider_id
        if provider_id in self._providers:
            raise ValueError(f"Provider already registered: {provider_id}")
        self._providers[provider_id] = provider
        queue = ProviderQueue(provider_id, self._settings)
        self._queues[provider_id] = queue
        logger.info("provider_registered", extra={"provider_id": provider_id})
        return queue

    def get(self, provider_id: str) -> Any:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise KeyError(f"Unknown provider: {provider_id}") from None

    def queue_for(self, provider_id: str) -> ProviderQueue:
        try:
            return self._queues[provider_id]
        except KeyError:
            raise KeyError(f"Unknown provider: {provider_id}") from None

    def start(self) -> None:
        for queue in self._queues.values():
            queue.start()

    def stop(self) -> None:
        for queue in self._queues.values():
            queue.stop()

    def __enter__(self) -> ProviderRegistry:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()
