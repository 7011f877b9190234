"""Unbounded channels carrying messages from any thread into the main thread.

A :class:`Channel` uses a :class:`~actorkit.waker.Waker` to schedule
delivery in the main thread.  Messages are passed on to a forwarding
callable when :meth:`~actorkit.waker.WakeHandlers.poll_wake` runs there.

The :class:`ChannelGuard` belongs to whatever receives the messages.
Closing it, or letting it be garbage-collected, closes the channel and
drops any pending messages.  Senders see the closure as a ``False``
result from :meth:`Channel.send` or through :meth:`Channel.is_closed`.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, Optional, TypeVar

from actorkit.waker import WakeHandlers, Waker

M = TypeVar("M")


class _ChannelState(Generic[M]):
    """Queue and waker shared by all ends of one channel."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.queue: list[M] = []
        self.waker: Optional[Waker] = None  # None once closed


class Channel(Generic[M]):
    """Sending end of a channel.  May be shared freely between threads."""

    def __init__(self, state: _ChannelState[M]) -> None:
        self._state = state

    def send(self, msg: M) -> bool:
        """Queue a message for delivery.  Returns False if the channel is closed."""
        state = self._state
        with state.lock:
            if state.waker is None:
                return False
            if not state.queue:
                state.waker.wake()
            state.queue.append(msg)
            return True

    def is_closed(self) -> bool:
        """Whether the channel has been closed."""
        with self._state.lock:
            return self._state.waker is None


class ChannelGuard:
    """Keeps a channel open; closing it closes the channel."""

    def __init__(self, state: _ChannelState[Any]) -> None:
        self._state = state

    def close(self) -> None:
        """Close the channel and drop pending messages.  Idempotent."""
        state = self._state
        with state.lock:
            waker = state.waker
            state.waker = None
            state.queue = []
        if waker is not None:
            waker.close()

    def __enter__(self) -> "ChannelGuard":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass


def open_channel(
    handlers: WakeHandlers, fwd: Callable[[M], Any]
) -> tuple[Channel[M], ChannelGuard]:
    """Create a channel delivering each message to ``fwd`` in the main thread.

    Returns the sending end and the guard that keeps the channel open.
    """
    state: _ChannelState[M] = _ChannelState()

    def on_wake(deleted: bool) -> None:
        with state.lock:
            pending = state.queue
            state.queue = []
            is_open = state.waker is not None
        if is_open:
            for msg in pending:
                fwd(msg)

    waker = handlers.add(on_wake)
    with state.lock:
        state.waker = waker
    return Channel(state), ChannelGuard(state)