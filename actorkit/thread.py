"""Worker threads connected to the main thread by a pair of queues.

:class:`PipedThread` starts a thread running a user function, which
talks back through a :class:`PipedLink`.  Messages from the thread are
delivered in the main thread through a wake handler.  When the thread
finishes, normally or by raising, the termination callback receives
``None`` or the error message.  Closing the :class:`PipedThread` sets
a cancel flag which the thread sees on its next send or receive.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable, Generic, Optional, TypeVar

from actorkit.waker import WakeHandlers, Waker

O = TypeVar("O")  # Messages sent to the thread
I = TypeVar("I")  # Messages received from the thread


class _Queues(Generic[O, I]):
    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.cancelled = False
        self.panic: Optional[str] = None
        self.outgoing: deque[O] = deque()
        self.incoming: list[I] = []


class PipedLink(Generic[O, I]):
    """The worker thread's end of a :class:`PipedThread`."""

    def __init__(self, queues: _Queues[O, I], waker: Waker) -> None:
        self._queues = queues
        self._waker = waker

    def send(self, msg: I) -> bool:
        """Send a message to the main thread.

        Returns False if the PipedThread has been closed, in which case
        this thread should finish.
        """
        q = self._queues
        with q.cond:
            cancelled = q.cancelled
            empty = not q.incoming
            q.incoming.append(msg)
        if empty:
            self._waker.wake()
        return not cancelled

    def recv(self) -> Optional[O]:
        """Wait for a message from the main thread.

        Returns None once the PipedThread has been closed, in which
        case this thread should finish.
        """
        q = self._queues
        with q.cond:
            q.cond.wait_for(lambda: q.cancelled or bool(q.outgoing))
            if q.cancelled:
                return None
            return q.outgoing.popleft()

    def cancel(self) -> bool:
        """Whether the main thread has asked this thread to finish."""
        with self._queues.cond:
            return self._queues.cancelled


def _run_thread(run: Callable[[PipedLink[Any, Any]], Any], link: PipedLink[Any, Any]) -> None:
    try:
        run(link)
    except BaseException as exc:  # report every failure to the main thread
        msg = str(exc) or type(exc).__name__
        with link._queues.cond:
            link._queues.panic = msg
    finally:
        # Closing the waker notifies the main thread of termination
        link._waker.close()


class PipedThread(Generic[O, I]):
    """A thread that exchanges messages with the main thread."""

    def __init__(
        self,
        fwd_recv: Callable[[I], Any],
        fwd_term: Callable[[Optional[str]], Any],
        handlers: WakeHandlers,
        run: Callable[[PipedLink[O, I]], Any],
    ) -> None:
        """Start a thread running ``run(link)``.

        ``fwd_recv`` is called in the main thread for each message the
        thread sends, and ``fwd_term`` once when it finishes, with None
        or the message of the error it raised.
        """
        queues: _Queues[O, I] = _Queues()
        self._queues = queues

        def on_wake(deleted: bool) -> None:
            panic = None
            with queues.cond:
                received = queues.incoming
                queues.incoming = []
                if deleted:
                    panic = queues.panic
                    queues.panic = None
            for msg in received:
                fwd_recv(msg)
            if deleted:
                fwd_term(panic)

        link: PipedLink[O, I] = PipedLink(queues, handlers.add(on_wake))
        thread = threading.Thread(target=_run_thread, args=(run, link), daemon=True)
        thread.start()

    def send(self, msg: O) -> None:
        """Send a message to the thread, waking it if it is waiting."""
        q = self._queues
        with q.cond:
            empty = not q.outgoing
            q.outgoing.append(msg)
            if empty:
                q.cond.notify_all()

    def close(self) -> None:
        """Ask the thread to finish."""
        q = self._queues
        with q.cond:
            q.cancelled = True
            q.cond.notify_all()

    def __enter__(self) -> "PipedThread[O, I]":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass