import threading
import time

import pytest

from actorkit.thread import PipedThread
from actorkit.waker import WakeHandlers


def _unexpected(msg):
    raise AssertionError(f"not expecting thread to send data: {msg!r}")


class _Rig:
    """Collects results from piped threads and runs the main side."""

    def __init__(self):
        self.woken = threading.Event()
        self.received = []
        self.terms = []

    @property
    def terminated(self):
        return bool(self.terms)

    @property
    def panic(self):
        assert len(self.terms) == 1, "termination must be reported exactly once"
        return self.terms[0]

    def run_until(self, handlers, finished, timeout=20.0):
        deadline = time.monotonic() + timeout
        handlers.poll_wake()
        while not finished():
            remaining = deadline - time.monotonic()
            assert remaining > 0, "timed out waiting for completion"
            self.woken.wait(min(remaining, 0.05))
            self.woken.clear()
            handlers.poll_wake()

    def run_to_end(self, handlers):
        self.run_until(handlers, lambda: self.terminated)


@pytest.fixture
def rig():
    return _Rig()


@pytest.mark.parametrize("closed_by, expected_count", [("main", 200), ("thread", 1000)])
def test_times_five_round_trips(rig, closed_by, expected_count):
    handlers = WakeHandlers(rig.woken.set)
    state = {"expect": 5, "count": 0}

    def worker(link):
        while (v := link.recv()) is not None:
            if closed_by == "thread" and v > 1000:
                break
            link.send(v * 5)

    def recv(v):
        assert v == state["expect"]
        state["count"] += 1
        if closed_by == "main" and v >= 1000:
            state["thread"].close()
            return
        nxt = v // 5 + 1
        state["expect"] = nxt * 5
        state["thread"].send(nxt)

    state["thread"] = PipedThread(recv, rig.terms.append, handlers, worker)
    state["thread"].send(1)
    rig.run_to_end(handlers)

    assert rig.panic is None
    assert state["count"] == expected_count
    if closed_by == "main":
        assert handlers.handler_count() <= 1


def test_thread_generates_values(rig):
    handlers = WakeHandlers(rig.woken.set)

    def worker(link):
        for v in range(10):
            time.sleep(0.01)
            link.send(v)

    thread = PipedThread(rig.received.append, rig.terms.append, handlers, worker)
    rig.run_to_end(handlers)
    assert rig.panic is None
    assert rig.received == list(range(10))
    thread.close()


def test_thread_sinks_values(rig):
    handlers = WakeHandlers(rig.woken.set)
    seen = []

    def worker(link):
        while (v := link.recv()) is not None:
            assert v == len(seen)
            seen.append(v)
            time.sleep(0.01)
            if len(seen) == 10:
                break

    thread = PipedThread(_unexpected, rig.terms.append, handlers, worker)
    for v in range(10):
        thread.send(v)
    rig.run_to_end(handlers)
    assert rig.panic is None
    assert seen == list(range(10))


@pytest.mark.parametrize(
    "error, expected",
    [(RuntimeError("TEST PANIC"), "TEST PANIC"), (ValueError(), "ValueError")],
)
def test_thread_failure_is_reported(rig, error, expected):
    handlers = WakeHandlers(rig.woken.set)

    def worker(link):
        time.sleep(0.01)
        raise error

    thread = PipedThread(_unexpected, rig.terms.append, handlers, worker)
    rig.run_to_end(handlers)
    assert rig.panic == expected
    thread.close()


def test_link_sees_cancel_after_close(rig):
    handlers = WakeHandlers(rig.woken.set)
    started = threading.Event()
    proceed = threading.Event()
    results = {}

    def worker(link):
        results["before"] = link.cancel()
        started.set()
        proceed.wait(5.0)
        results["after"] = link.cancel()
        results["recv"] = link.recv()
        results["send"] = link.send(5)

    thread = PipedThread(rig.received.append, rig.terms.append, handlers, worker)
    assert started.wait(5.0)
    thread.close()
    proceed.set()
    rig.run_to_end(handlers)

    assert results == {"before": False, "after": True, "recv": None, "send": False}
    assert rig.received == [5]
    assert rig.panic is None


def test_context_manager_closes_thread(rig):
    handlers = WakeHandlers(rig.woken.set)

    def worker(link):
        while (v := link.recv()) is not None:
            link.send(v + 1)

    with PipedThread(rig.received.append, rig.terms.append, handlers, worker) as thread:
        thread.send(41)
        rig.run_until(handlers, lambda: bool(rig.received))
    rig.run_to_end(handlers)

    assert rig.received == [42]
    assert rig.panic is None


@pytest.mark.parametrize("count", [1, 3])
def test_messages_queued_before_recv_arrive_in_order(rig, count):
    handlers = WakeHandlers(rig.woken.set)

    def worker(link):
        for _ in range(count):
            link.send(link.recv())

    thread = PipedThread(rig.received.append, rig.terms.append, handlers, worker)
    for v in range(count):
        thread.send(v)
    rig.run_to_end(handlers)

    assert rig.received == list(range(count))
    assert rig.panic is None