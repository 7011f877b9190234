# actorkit

This package provides building blocks for a single-threaded actor runtime.
It has a timer queue, and it has primitives that let other threads wake the
main thread and pass messages to it. The package has no dependencies outside
the standard library.

## Installation

```
pip install actorkit
```

## Modules

### `actorkit.timers`

`Timers(now)` holds callbacks that are due to run at given instants. An
instant is a float number of seconds on a monotonic clock, such as the value
returned by `time.monotonic()`.

`advance(now, queue)` moves the current time forward. It appends every
callback that has expired to `queue`, which can be any mutable sequence,
such as a list. The caller then runs the callbacks.

There are three kinds of timer:

- **Fixed timers** (`add`, `delete`) run once, at a set time. `add` returns
  a `FixedTimerKey`.
- **Max timers** (`add_max`, `mod_max`, `del_max`, `max_is_active`) run at
  the latest expiry time they have been given. `add_max` returns a
  `MaxTimerKey`. Moving the expiry later is cheap. Use this kind for cases
  such as "300 ms after the last keypress", where the expiry is pushed back
  on every event.
- **Min timers** (`add_min`, `mod_min`, `del_min`, `min_is_active`) run at
  the earliest expiry time they have been given. `add_min` returns a
  `MinTimerKey`. These timers approach their target in steps, so moving the
  expiry a little earlier usually costs nothing.

The `delete`, `mod_*` and `del_*` methods return `False` when the timer has
already expired or been deleted. `next_expiry()` returns the instant at
which the next timer is due, or `None` when no timer is set. `slots_used()`
returns the number of max and min slots in use. A fixed timer set far ahead
also takes one of these slots.

Times are stored at a resolution of about 16 µs. Expiry times are rounded
up and the current time is rounded down, so a timer never runs early. A
timer set more than about nine hours ahead is requeued internally until it
reaches its expiry time.

### `actorkit.waker`

`WakeHandlers(poll_waker)` lives in the main thread. `poll_waker` is a
function that any thread may call to wake the main thread's poller.

`add(cb)` registers a handler and returns a `Waker`. You pass the `Waker`
to another thread.

- `Waker.wake()` schedules one call to `cb(False)` in the main thread. If
  several wakes happen before that call runs, they are merged into one
  call. `poll_waker` is called only when nothing was pending. Calling
  `wake()` on a closed `Waker` raises `ValueError`.
- Closing a `Waker` schedules a final call to `cb(True)`, after which the
  handler is removed. A `Waker` is closed by `close()`, by leaving its
  `with` block, or by being garbage-collected.

The main thread calls `WakeHandlers.poll_wake()` after it has been woken.
This runs every handler that is pending. `handler_count()` reports how many
slots are in use, and this count includes the internal drop handlers.

### `actorkit.channel`

`open_channel(handlers, fwd)` returns a `(Channel, ChannelGuard)` pair.

Any thread may call `Channel.send(msg)`. Each message reaches `fwd(msg)` in
the main thread, in the order the messages were sent, when `poll_wake()`
runs.

Closing the guard closes the channel and drops any messages still pending.
The guard is closed by `close()`, by leaving its `with` block, or by being
garbage-collected. Once the channel is closed, `send` returns `False` and
`is_closed()` returns `True`.

### `actorkit.thread`

`PipedThread(fwd_recv, fwd_term, handlers, run)` starts a daemon thread
that runs `run(link)`. The thread uses its `PipedLink` as follows:

- `recv()` blocks until a message arrives. It returns `None` once the
  `PipedThread` has been closed.
- `send(msg)` passes a message to `fwd_recv` in the main thread. It returns
  `False` once the `PipedThread` has been closed.
- `cancel()` reports whether the `PipedThread` has been closed.

The main thread uses `PipedThread.send(msg)` to pass messages to the
worker. When `run` returns, `fwd_term(None)` is called. If `run` raises,
`fwd_term` receives the exception's message, or the name of the exception
type when the message is empty.

A `PipedThread` is closed by `close()`, by leaving its `with` block, or by
being garbage-collected. Closing it tells the worker to stop.

## Example

```python
import threading
from actorkit.waker import WakeHandlers
from actorkit.thread import PipedThread

woken = threading.Event()
handlers = WakeHandlers(woken.set)
results, done = [], []

with PipedThread(results.append, done.append, handlers,
                 lambda link: [link.send(v * 5) for v in iter(link.recv, None)]) as worker:
    worker.send(1)
    while not results:
        woken.wait()
        woken.clear()
        handlers.poll_wake()

print(results)  # [5]
```

## What is not included

actorkit contains no actor type, no event loop and no I/O poller. The
application must do the following itself:

- Supply the `poll_waker` function.
- Wait for that function to be called, then call `poll_wake()`.
- Call `Timers.advance()` and run the callbacks that it returns.