"""Timer queue holding fixed, "max" and "min" timers.

Instants are plain float seconds on a monotonic clock, such as the
values returned by :func:`time.monotonic`.  Internally times are kept
as integers of the form ``(secs << 16) | (nanos >> 14)`` relative to
the instant the queue was created, giving a resolution just under
17 microseconds.  Expiry times are rounded up and the current time is
rounded down, so a timer never fires early.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, MutableSequence, Optional

_NS_PER_SEC = 1_000_000_000
_FRAC_SHIFT = 14
# Furthest ahead a timer is queued directly (~9 hours); longer timers
# are requeued in steps until they reach their target time.
_MAX_AHEAD = 0x7FFF << 16
# Slot numbers at or above this value mark fixed timers.
_FIXED_BASE = 0x8000_0000
_U32_MASK = 0xFFFF_FFFF

TimerCallback = Callable[..., Any]


@dataclass(frozen=True)
class FixedTimerKey:
    """Key of a fixed timer, used to delete it.

    For timers within ~9 hours, ``slot`` is a unique number with the
    top bit set and ``gen_or_time`` is the internal expiry time.  For
    longer timers, which are held in a variable slot, ``slot`` is the
    slot index and ``gen_or_time`` its generation.
    """

    slot: int = 0
    gen_or_time: int = 0


@dataclass(frozen=True)
class MaxTimerKey:
    """Key of a "max" timer, which expires at the latest time given."""

    slot: int = 0
    gen: int = 0


@dataclass(frozen=True)
class MinTimerKey:
    """Key of a "min" timer, which expires at the earliest time given."""

    slot: int = 0
    gen: int = 0


class _Kind(Enum):
    MAX = "max"
    MIN = "min"


@dataclass
class _VarTimer:
    kind: _Kind
    expiry: int  # Target expiry time
    curr: int  # Time currently queued


@dataclass
class _VarSlot:
    gen: int
    item: Optional[_VarTimer]  # None when the slot is free


def _duration_ns(inst: float, t0: float) -> int:
    return max(0, round((inst - t0) * _NS_PER_SEC))


def _time_ceil(inst: float, t0: float) -> int:
    secs, nanos = divmod(_duration_ns(inst, t0), _NS_PER_SEC)
    return (secs << 16) | ((nanos + (1 << _FRAC_SHIFT) - 1) >> _FRAC_SHIFT)


def _time_floor(inst: float, t0: float) -> int:
    secs, nanos = divmod(_duration_ns(inst, t0), _NS_PER_SEC)
    return (secs << 16) | (nanos >> _FRAC_SHIFT)


def _time_instant(time: int, t0: float) -> float:
    ns = (time >> 16) * _NS_PER_SEC + ((time & 0xFFFF) << _FRAC_SHIFT)
    return t0 + ns / _NS_PER_SEC


def _rounded_75point(t0: int, t1: int) -> int:
    """Approximate 75% point between two times, rounded up.

    Rounding makes many min timers expire together.  Within ~500ms of
    the target, the target itself is returned.
    """
    p75 = (t0 + 3 * t1) >> 2
    gap = t1 - t0
    if gap < 0x8000:
        return t1
    rounding = ((1 << gap.bit_length()) - 1) >> 4
    rv = ((p75 - 1) | rounding) + 1
    if (rv & 0xFFFF) >= 61036:
        rv = (rv & ~0xFFFF) + 0x10000
    return rv


class Timers:
    """Ordered queue of timers, expired by advancing the current time."""

    def __init__(self, now: float) -> None:
        self._t0 = now
        self._now = 0
        self._entries: dict[tuple[int, int], TimerCallback] = {}
        self._heap: list[tuple[int, int]] = []
        self._var: list[_VarSlot] = []
        self._free: list[int] = []
        self._seq = 0

    # Queue storage -------------------------------------------------

    def _insert(self, key: tuple[int, int], fn: TimerCallback) -> None:
        self._entries[key] = fn
        heapq.heappush(self._heap, key)

    def _remove(self, key: tuple[int, int]) -> Optional[TimerCallback]:
        fn = self._entries.pop(key, None)
        if len(self._heap) > 2 * len(self._entries) + 64:
            self._heap = list(self._entries)
            heapq.heapify(self._heap)
        return fn

    def _drop_stale(self) -> None:
        while self._heap and self._heap[0] not in self._entries:
            heapq.heappop(self._heap)

    # Variable slots ------------------------------------------------

    def _alloc_slot(self, item: _VarTimer) -> tuple[int, int]:
        if self._free:
            index = self._free.pop()
            slot = self._var[index]
            if slot.item is not None:
                raise RuntimeError("free list points to a slot that is in use")
            slot.item = item
            return index, slot.gen
        index = len(self._var)
        if index >= _FIXED_BASE:
            raise OverflowError("exceeded 2^31 variable timers at the same time")
        # Generations start at 1 so that default keys never match
        self._var.append(_VarSlot(gen=1, item=item))
        return index, 1

    def _free_slot(self, index: int) -> None:
        slot = self._var[index]
        if slot.item is None:
            raise RuntimeError("deleting a timer slot that is already free")
        slot.gen = max(1, (slot.gen + 1) & _U32_MASK)
        slot.item = None
        self._free.append(index)

    def _live_slot(self, index: int, gen: int, kind: _Kind) -> Optional[_VarSlot]:
        if 0 <= index < len(self._var):
            slot = self._var[index]
            if slot.gen == gen and slot.item is not None and slot.item.kind is kind:
                return slot
        return None

    def _is_active(self, index: int, gen: int) -> bool:
        return 0 <= index < len(self._var) and self._var[index].gen == gen

    def slots_used(self) -> int:
        """Number of variable slots currently in use."""
        return len(self._var) - len(self._free)

    # Public interface ----------------------------------------------

    def next_expiry(self) -> Optional[float]:
        """Instant at which the next timer expires, or None if there is none."""
        self._drop_stale()
        if not self._heap:
            return None
        return _time_instant(self._heap[0][0], self._t0)

    def advance(self, now: float, queue: MutableSequence[TimerCallback]) -> None:
        """Move the current time to ``now``, appending expired callbacks to ``queue``."""
        target = _time_floor(now, self._t0)
        while self._now < target:
            # Step at most ~9 hours at a time so no queued timer is skipped
            step = min(self._now + _MAX_AHEAD, target)
            head: list[tuple[tuple[int, int], TimerCallback]] = []
            while self._heap and self._heap[0][0] <= step:
                key = heapq.heappop(self._heap)
                fn = self._entries.pop(key, None)
                if fn is not None:
                    head.append((key, fn))
            self._now = step

            for (_, slot_index), fn in head:
                if slot_index >= _FIXED_BASE:
                    queue.append(fn)
                    continue
                vt = self._var[slot_index].item
                if vt is None:
                    raise RuntimeError("timer key points to a free slot")
                if vt.expiry <= target:
                    queue.append(fn)
                    self._free_slot(slot_index)
                    continue
                limit = min(vt.expiry, self._now + _MAX_AHEAD)
                if vt.kind is _Kind.MAX:
                    vt.curr = limit
                else:
                    vt.curr = _rounded_75point(self._now, limit)
                self._insert((vt.curr, slot_index), fn)

    def add(self, expiry_time: float, fn: TimerCallback) -> FixedTimerKey:
        """Add a fixed timer, which can only expire or be deleted."""
        # Never queue at exactly `now`: time must move for it to expire
        expiry = max(_time_ceil(expiry_time, self._t0), self._now + 1)
        if expiry >= self._now + _MAX_AHEAD:
            mk = self.add_max(expiry_time, fn)
            return FixedTimerKey(slot=mk.slot, gen_or_time=mk.gen)

        time = expiry
        while True:
            for _ in range(_FIXED_BASE):
                self._seq = (self._seq + 1) & _U32_MASK
                slot = self._seq | _FIXED_BASE
                key = (time, slot)
                if key not in self._entries:
                    self._insert(key, fn)
                    return FixedTimerKey(slot=slot, gen_or_time=time)
            time += 1

    def delete(self, key: FixedTimerKey) -> bool:
        """Delete a fixed timer.  Returns False if it no longer exists."""
        if key.slot < _FIXED_BASE:
            return self.del_max(MaxTimerKey(slot=key.slot, gen=key.gen_or_time))
        return self._remove((key.gen_or_time, key.slot)) is not None

    def add_max(self, expiry_time: float, fn: TimerCallback) -> MaxTimerKey:
        """Add a max timer, expiring at the latest expiry time it is given."""
        expiry = _time_ceil(expiry_time, self._t0)
        curr = min(max(expiry, self._now + 1), self._now + _MAX_AHEAD)
        index, gen = self._alloc_slot(_VarTimer(_Kind.MAX, expiry, curr))
        self._insert((curr, index), fn)
        return MaxTimerKey(slot=index, gen=gen)

    def mod_max(self, key: MaxTimerKey, expiry_time: float) -> bool:
        """Offer a new expiry time to a max timer.  False if it no longer exists."""
        slot = self._live_slot(key.slot, key.gen, _Kind.MAX)
        if slot is None:
            return False
        vt = slot.item
        vt.expiry = max(vt.expiry, _time_ceil(expiry_time, self._t0))
        return True

    def del_max(self, key: MaxTimerKey) -> bool:
        """Delete a max timer.  False if it no longer exists."""
        slot = self._live_slot(key.slot, key.gen, _Kind.MAX)
        if slot is None:
            return False
        self._remove((slot.item.curr, key.slot))
        self._free_slot(key.slot)
        return True

    def max_is_active(self, key: MaxTimerKey) -> bool:
        """Whether the max timer is still waiting to expire."""
        return self._is_active(key.slot, key.gen)

    def add_min(self, expiry_time: float, fn: TimerCallback) -> MinTimerKey:
        """Add a min timer, expiring at the earliest expiry time it is given."""
        expiry = _time_ceil(expiry_time, self._t0)
        start = self._now + 1
        curr = _rounded_75point(start, min(max(expiry, start), self._now + _MAX_AHEAD))
        index, gen = self._alloc_slot(_VarTimer(_Kind.MIN, expiry, curr))
        self._insert((curr, index), fn)
        return MinTimerKey(slot=index, gen=gen)

    def mod_min(self, key: MinTimerKey, expiry_time: float) -> bool:
        """Offer a new expiry time to a min timer.  False if it no longer exists."""
        slot = self._live_slot(key.slot, key.gen, _Kind.MIN)
        if slot is None:
            return False
        vt = slot.item
        expiry = _time_ceil(expiry_time, self._t0)
        if expiry < vt.expiry:
            vt.expiry = expiry
            if expiry < vt.curr:
                fn = self._remove((vt.curr, key.slot))
                if fn is None:
                    raise RuntimeError("min timer missing from the queue")
                start = self._now + 1
                target = min(max(expiry, start), self._now + _MAX_AHEAD)
                vt.curr = _rounded_75point(start, target)
                self._insert((vt.curr, key.slot), fn)
        return True

    def del_min(self, key: MinTimerKey) -> bool:
        """Delete a min timer.  False if it no longer exists."""
        slot = self._live_slot(key.slot, key.gen, _Kind.MIN)
        if slot is None:
            return False
        self._remove((slot.item.curr, key.slot))
        self._free_slot(key.slot)
        return True

    def min_is_active(self, key: MinTimerKey) -> bool:
        """Whether the min timer is still waiting to expire."""
        return self._is_active(key.slot, key.gen)