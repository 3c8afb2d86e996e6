"""Decides where promise handlers run.

Handlers are dispatched according to a ``DispatchMethod``:

* ``unspecified()``: run now when on the main thread, otherwise hand the call
  to the process-wide ``MainQueue``.
* ``synchronous()``: run now, on whatever thread resolved or registered.
* ``queue(target)``: run now when the calling thread already runs ``target``,
  otherwise submit to ``target``.

Each execution queue marks the thread(s) running it with a thread-local
marker. The marker is only written by the queues in this module: a
``SerialQueue`` worker sets it once when its thread starts, and a
``MainQueue`` sets it for the duration of ``run_pending``.
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
from queue import Empty, Queue
import threading
from typing import Any, Callable, Literal, Sequence, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

_marker = threading.local()


def current_queue() -> "ExecutionQueue | None":
    """Return the execution queue the calling thread is running, if any."""
    return getattr(_marker, "queue", None)


def _mark_current(queue: "ExecutionQueue | None") -> None:
    _marker.queue = queue


class ExecutionQueue(ABC):
    """A context that promise handlers can be submitted to."""

    def __init__(self, label: str) -> None:
        self.label = label

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)`` to run on this queue.

        Calls submitted from one thread run in submission order.
        """
        pass

    def is_current(self) -> bool:
        """Whether the calling thread is running this queue."""
        return current_queue() is self

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label!r}>"


def _log_handler_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Promise handler raised on a serial queue", exc_info=exc)


class SerialQueue(ExecutionQueue):
    """An execution queue backed by a single worker thread.

    Submitted calls run one at a time, in FIFO order. The worker thread is
    marked as running this queue when it starts.
    """

    def __init__(self, label: str = "tiny-promise") -> None:
        """Initialize the queue.

        Args:
            label: Name of the queue, also used as the worker thread name prefix
        """
        super().__init__(label)
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=label,
            initializer=_mark_current,
            initargs=(self,),
        )

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)`` on the worker thread.

        Exceptions raised by ``fn`` are logged and otherwise dropped.

        Raises:
            RuntimeError: If the queue has been shut down
        """
        self._executor.submit(fn, *args).add_done_callback(_log_handler_failure)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting calls, optionally waiting for queued calls to finish."""
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "SerialQueue":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


class MainQueue(ExecutionQueue):
    """Calls waiting for the application's main loop.

    Nothing runs until the owner of the main loop pumps the queue with
    ``run_pending``.
    """

    def __init__(self, label: str = "main") -> None:
        super().__init__(label)
        self._pending: Queue[tuple[Callable[..., Any], tuple[Any, ...]]] = Queue()

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self._pending.put((fn, args))

    def run_pending(self, timeout: float | None = None) -> int:
        """Run every queued call on the calling thread.

        Calls submitted while pumping are run too. Exceptions raised by a call
        propagate to the caller; calls still queued stay queued.

        Args:
            timeout: Seconds to wait for a first call when the queue is empty,
                or None to return immediately

        Returns:
            The number of calls that were run
        """
        previous = current_queue()
        _mark_current(self)
        count = 0
        try:
            if timeout is not None:
                try:
                    fn, args = self._pending.get(timeout=timeout)
                except Empty:
                    return count
                fn(*args)
                count += 1
            while True:
                try:
                    fn, args = self._pending.get_nowait()
                except Empty:
                    return count
                fn(*args)
                count += 1
        finally:
            _mark_current(previous)


_main_queue: MainQueue | None = None
_main_queue_lock = threading.Lock()


def main_queue() -> MainQueue:
    """Return the process-wide main queue, creating it on first use."""
    global _main_queue
    with _main_queue_lock:
        if _main_queue is None:
            _main_queue = MainQueue()
        return _main_queue


_KINDS = ("unspecified", "synchronous", "queue")


@dataclass(frozen=True)
class DispatchMethod:
    """Where handlers registered through a PromiseSource run."""

    kind: Literal["unspecified", "synchronous", "queue"]
    target: ExecutionQueue | None = None

    def __post_init__(self) -> None:
        if self.kind not in _KINDS:
            raise ValueError(f"Unknown dispatch kind {self.kind!r}")
        if self.kind == "queue":
            if not isinstance(self.target, ExecutionQueue):
                raise TypeError(
                    f"Expected an ExecutionQueue, got {type(self.target).__name__}"
                )
        elif self.target is not None:
            raise TypeError(f"A {self.kind!r} dispatch method takes no target")

    @classmethod
    def unspecified(cls) -> "DispatchMethod":
        return cls("unspecified")

    @classmethod
    def synchronous(cls) -> "DispatchMethod":
        return cls("synchronous")

    @classmethod
    def queue(cls, target: ExecutionQueue) -> "DispatchMethod":
        return cls("queue", target)


# Default for call_handlers' ``current``: read the calling thread's marker.
_THREAD_MARKER: Any = object()


def _run_all(handlers: Sequence[Callable[[T], None]], value: T) -> None:
    """Run every handler now, then re-raise the first exception, if any.

    Later exceptions are logged so that one failing handler never keeps the
    others of its batch from running.
    """
    first_exc: Exception | None = None
    for handler in handlers:
        try:
            handler(value)
        except Exception as exc:
            if first_exc is None:
                first_exc = exc
            else:
                logger.error("Promise handler raised", exc_info=exc)
    if first_exc is not None:
        raise first_exc


def call_handlers(
    handlers: Sequence[Callable[[T], None]],
    value: T,
    method: DispatchMethod,
    current: ExecutionQueue | None = _THREAD_MARKER,
) -> None:
    """Run each handler with ``value``, in order, as ``method`` prescribes.

    Handlers run right away all get called, even when one of them raises;
    the first exception is then re-raised to the caller.

    Args:
        handlers: Handlers to run, in the order they were registered
        value: Argument passed to every handler
        method: Dispatch method of the source the handlers belong to
        current: Execution queue the caller is running, if known. Defaults to
            the calling thread's marker
    """
    if not handlers:
        return

    if method.kind == "synchronous":
        _run_all(handlers, value)

    elif method.kind == "queue":
        target = method.target
        assert target is not None
        if current is _THREAD_MARKER:
            current = current_queue()
        if current is target:
            _run_all(handlers, value)
        else:
            for handler in handlers:
                target.submit(handler, value)

    # Main thread doesn't guarantee the main loop, so this is only an optimization
    elif threading.current_thread() is threading.main_thread():
        _run_all(handlers, value)

    else:
        for handler in handlers:
            main_queue().submit(handler, value)
