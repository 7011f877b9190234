"""Timer queue, wakers, channels and piped worker threads for a single-threaded actor runtime."""

__version__ = "0.2.12"
__all__ = ["timers", "waker", "channel", "thread"]