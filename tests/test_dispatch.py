# tests/test_dispatch.py
import logging
import threading

import pytest
from tiny_promise.dispatch import (
    DispatchMethod,
    ExecutionQueue,
    MainQueue,
    SerialQueue,
    call_handlers,
    current_queue,
    main_queue,
)
from tiny_promise.result import Value
from tiny_promise.source import PromiseSource


class RecordingQueue(ExecutionQueue):
    """Execution queue that only records what was submitted to it."""

    def __init__(self) -> None:
        super().__init__("recording")
        self.submitted = []

    def submit(self, fn, *args):
        self.submitted.append((fn, args))


@pytest.fixture(autouse=True)
def empty_main_queue():
    """Start and end every test with nothing waiting on the main queue."""
    main_queue().run_pending()
    yield
    main_queue().run_pending()


def test_synchronous_dispatch_runs_on_calling_thread():
    source = PromiseSource(dispatch=DispatchMethod.synchronous())
    threads = []
    source.promise.add_handler(lambda r: threads.append(threading.current_thread()))

    worker = threading.Thread(target=source.resolve, args=(1,))
    worker.start()
    worker.join()

    assert threads == [worker]


def test_unspecified_dispatch_on_main_thread_is_synchronous():
    """Tests run on the main thread, so handlers run right away."""
    source = PromiseSource()
    calls = []
    source.promise.add_handler(calls.append)
    source.resolve("now")
    assert calls == [Value("now")]
    assert main_queue().run_pending() == 0


def test_unspecified_dispatch_off_main_thread_goes_to_main_queue():
    """
    Resolving from a worker thread queues handlers on the main queue until
    the main loop pumps it.
    """
    source = PromiseSource()
    calls = []
    source.promise.add_handler(lambda r: calls.append((r, threading.current_thread())))
    source.promise.add_handler(lambda r: calls.append(("second", main_queue().is_current())))

    worker = threading.Thread(target=source.resolve, args=(3,))
    worker.start()
    worker.join()
    assert calls == []

    assert main_queue().run_pending() == 2
    assert calls == [(Value(3), threading.main_thread()), ("second", True)]
    assert current_queue() is None


def test_main_queue_waits_for_first_call():
    """A foreign callback API resolving later is picked up by a blocking pump."""
    source = PromiseSource()
    calls = []
    source.promise.add_handler(calls.append)

    timer = threading.Timer(0.05, source.resolve, args=("later",))
    timer.start()
    assert main_queue().run_pending(timeout=5) == 1
    timer.join()

    assert calls == [Value("later")]


def test_main_queue_timeout_without_calls():
    queue = MainQueue("idle")
    assert queue.run_pending(timeout=0.01) == 0


def test_main_queue_runs_calls_submitted_while_pumping():
    queue = MainQueue("nested")
    calls = []
    queue.submit(lambda: queue.submit(calls.append, "inner"))
    assert queue.run_pending() == 2
    assert calls == ["inner"]


def test_queue_dispatch_runs_on_target_in_order():
    """Handlers released together run on the target queue in registration order."""
    with SerialQueue("test-serial") as queue:
        source = PromiseSource(dispatch=DispatchMethod.queue(queue))
        seen = []
        done = threading.Event()
        for i in range(5):
            source.promise.add_handler(
                lambda r, i=i: seen.append((i, r, queue.is_current()))
            )
        source.promise.add_handler(lambda r: done.set())

        source.resolve("ok")
        assert done.wait(5)

    assert seen == [(i, Value("ok"), True) for i in range(5)]


def test_queue_dispatch_skips_hop_when_already_on_target():
    """A handler dispatched from the target queue itself runs synchronously."""
    with SerialQueue("test-dedup") as queue:
        source = PromiseSource(dispatch=DispatchMethod.queue(queue))
        order = []
        done = threading.Event()

        def outer(result):
            source.promise.add_handler(lambda r: order.append(("inner", r)))
            order.append("outer done")
            done.set()

        source.resolve(5)
        queue.submit(source.promise.add_handler, outer)
        assert done.wait(5)

    assert order == [("inner", Value(5)), "outer done"]


def test_queue_dispatch_from_other_thread_is_submitted():
    queue = RecordingQueue()
    source = PromiseSource(dispatch=DispatchMethod.queue(queue))
    calls = []
    source.promise.add_handler(calls.append)
    source.resolve(1)

    assert calls == []
    assert len(queue.submitted) == 1
    fn, args = queue.submitted[0]
    fn(*args)
    assert calls == [Value(1)]


def test_call_handlers_explicit_current_queue():
    """The caller can say which queue it is on instead of relying on the thread marker."""
    queue = RecordingQueue()
    method = DispatchMethod.queue(queue)
    calls = []

    call_handlers([calls.append, calls.append], "a", method, current=queue)
    assert calls == ["a", "a"]
    assert queue.submitted == []

    call_handlers([calls.append], "b", method, current=None)
    assert calls == ["a", "a"]
    assert queue.submitted == [(calls.append, ("b",))]


def test_call_handlers_without_handlers_does_nothing():
    call_handlers([], "unused", DispatchMethod.queue(RecordingQueue()))


def test_serial_queue_marks_its_worker_thread():
    with SerialQueue("test-marker") as queue:
        found = []
        done = threading.Event()
        queue.submit(lambda: (found.append(current_queue()), done.set()))
        assert done.wait(5)
    assert found == [queue]
    assert not queue.is_current()


def test_serial_queue_logs_failing_handler(caplog):
    caplog.set_level(logging.ERROR, logger="tiny_promise.dispatch")
    queue = SerialQueue("test-failure")
    source = PromiseSource(dispatch=DispatchMethod.queue(queue))

    def failing(result):
        raise RuntimeError("handler bug")

    source.promise.add_handler(failing)
    source.resolve(None)
    queue.shutdown(wait=True)

    assert [r.getMessage() for r in caplog.records] == [
        "Promise handler raised on a serial queue"
    ]
    assert source.state.is_resolved


def test_serial_queue_rejects_calls_after_shutdown():
    queue = SerialQueue("test-shutdown")
    queue.shutdown()
    with pytest.raises(RuntimeError):
        queue.submit(print)


def test_queue_dispatch_requires_execution_queue():
    with pytest.raises(TypeError, match="Expected an ExecutionQueue"):
        DispatchMethod.queue("main")


def test_dispatch_method_constructor_is_validated():
    """Building a DispatchMethod directly is checked as eagerly as the classmethods."""
    with pytest.raises(ValueError, match="Unknown dispatch kind 'bogus'"):
        DispatchMethod("bogus")
    with pytest.raises(TypeError, match="Expected an ExecutionQueue, got NoneType"):
        DispatchMethod("queue")
    with pytest.raises(TypeError, match="takes no target"):
        DispatchMethod("synchronous", RecordingQueue())
    assert DispatchMethod("queue", main_queue()).target is main_queue()


def test_dispatch_method_equality():
    queue = RecordingQueue()
    assert DispatchMethod.synchronous() == DispatchMethod.synchronous()
    assert DispatchMethod.queue(queue) == DispatchMethod.queue(queue)
    assert DispatchMethod.queue(queue) != DispatchMethod.queue(RecordingQueue())
    assert DispatchMethod.unspecified() != DispatchMethod.synchronous()
