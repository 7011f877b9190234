"""Wake-ups from other threads into the main thread.

A :class:`WakeHandlers` owns a set of wake handlers, each reachable
through a :class:`Waker` that may be passed to another thread.  Calling
:meth:`Waker.wake` marks the handler as pending and, if nothing else was
pending, calls the poll-waker supplied by the main thread's I/O poller.
The main thread then calls :meth:`WakeHandlers.poll_wake` to run the
pending handlers.

When a waker is closed, its handler gets one final call with
``deleted=True`` and is then removed.  The first slot of every block
of 4096 is reserved for the handler that processes those closures.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

WakeCallback = Callable[[bool], None]

_BLOCK_SIZE = 4096
_MAX_SLOTS = 1 << 32


class _PollWaker:
    """State shared between the main thread and all wakers."""

    def __init__(self, waker: Callable[[], None]) -> None:
        self.waker = waker
        # Reentrant so that a waker finalised during a locked section
        # in the same thread cannot deadlock.
        self.lock = threading.RLock()
        self.pending: set[int] = set()
        self.drops: list[int] = []

    def set(self, bit: int) -> None:
        with self.lock:
            if bit in self.pending:
                return
            notify = not self.pending
            self.pending.add(bit)
        if notify:
            self.waker()

    def drop(self, bit: int) -> None:
        with self.lock:
            self.drops.append(bit)
        self.set(bit - bit % _BLOCK_SIZE)


class Waker:
    """Schedules a call to its wake handler in the main thread.

    Obtain one from :meth:`WakeHandlers.add`.  It may be used from any
    thread.  Closing it (directly, by leaving a ``with`` block, or by
    letting it be garbage-collected) schedules a final call to the
    handler with ``deleted=True``, after which the handler is removed.
    """

    def __init__(self, bit: int, shared: _PollWaker) -> None:
        self._bit = bit
        self._shared = shared
        self._closed = False
        self._close_lock = threading.Lock()

    def wake(self) -> None:
        """Schedule the wake handler, unless a call is already pending."""
        if self._closed:
            raise ValueError("wake on a closed Waker")
        self._shared.set(self._bit)

    def close(self) -> None:
        """Schedule the final, deleting call to the handler.  Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._shared.drop(self._bit)

    def __enter__(self) -> "Waker":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass


class WakeHandlers:
    """Registry of wake handlers, run from the main thread."""

    def __init__(self, poll_waker: Callable[[], None]) -> None:
        self._shared = _PollWaker(poll_waker)
        # Occupied slots; a value of None means the handler is borrowed
        self._slab: dict[int, Optional[WakeCallback]] = {}
        self._free: list[int] = []
        self._next = 0

    # Slot storage --------------------------------------------------

    def _insert(self, cb: WakeCallback) -> int:
        if self._free:
            index = self._free.pop()
        else:
            index = self._next
            if index >= _MAX_SLOTS:
                raise OverflowError("exceeded 2^32 Waker instances")
            self._next += 1
        self._slab[index] = cb
        return index

    def _drop_handler(self, deleted: bool) -> None:
        self._process_drops()

    def _process_drops(self) -> None:
        for bit in self.drop_list():
            cb = self.delete(bit)
            if cb is not None:
                cb(True)

    # Public interface ----------------------------------------------

    def wake_list(self) -> list[int]:
        """Take the slots of all handlers that need to run, in order."""
        with self._shared.lock:
            pending = self._shared.pending
            self._shared.pending = set()
        return sorted(pending)

    def drop_list(self) -> list[int]:
        """Take the slots of all wakers closed since the last call."""
        with self._shared.lock:
            drops = self._shared.drops
            self._shared.drops = []
        return drops

    def handler_borrow(self, bit: int) -> Optional[WakeCallback]:
        """Take a handler out of its slot, or None if the slot is empty.

        Raises RuntimeError if the handler is already borrowed.
        """
        if bit not in self._slab:
            return None
        cb = self._slab[bit]
        if cb is None:
            raise RuntimeError("wake handler has been borrowed from its slot twice")
        self._slab[bit] = None
        return cb

    def handler_restore(self, bit: int, cb: WakeCallback) -> None:
        """Put a borrowed handler back into its slot.

        Raises RuntimeError if the slot was deleted or is occupied.
        """
        if bit not in self._slab:
            raise RuntimeError("wake handler slot unexpectedly deleted during handler call")
        if self._slab[bit] is not None:
            raise RuntimeError(
                "wake handler slot unexpectedly occupied by another handler during call"
            )
        self._slab[bit] = cb

    def add(self, cb: WakeCallback) -> Waker:
        """Register a handler and return the Waker that triggers it.

        The handler is called as ``cb(deleted)`` and must tolerate
        spurious wakes.
        """
        bit = self._insert(cb)
        while bit % _BLOCK_SIZE == 0:
            # The first slot of each block belongs to the drop handler
            self._slab[bit] = self._drop_handler
            bit = self._insert(cb)
        return Waker(bit, self._shared)

    def delete(self, bit: int) -> Optional[WakeCallback]:
        """Remove a handler and return it, or None if it was not there.

        Drop-handler slots are never removed.
        """
        if bit % _BLOCK_SIZE == 0 or bit not in self._slab:
            return None
        cb = self._slab.pop(bit)
        self._free.append(bit)
        return cb

    def handler_count(self) -> int:
        """Number of slots in use, drop handlers included."""
        return len(self._slab)

    def poll_wake(self) -> None:
        """Run every pending wake handler once."""
        for bit in self.wake_list():
            cb = self.handler_borrow(bit)
            if cb is None:
                continue
            try:
                cb(False)
            finally:
                self.handler_restore(bit, cb)