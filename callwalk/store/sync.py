"""Write coalescing and change notification.

Two debounce tiers run on one ``Scheduler``:

* ``WriteQueue`` collapses bursts of ``save`` calls into one write per key
  after a short quiet period.
* ``UpdateNotifier`` fires later, writes the update marker and publishes
  typed ``ChangeEvent`` objects so consumers know to re-read.

Timers only run when the owner pumps ``Scheduler.run_pending()``; there are
no background threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import heapq
import itertools
import logging
import time
import uuid
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from callwalk.errors import StorageError, StorageQuotaError
from .storage import Storage

logger = logging.getLogger(__name__)

SAVE_DEBOUNCE_SECONDS = 0.25
NOTIFY_DEBOUNCE_SECONDS = 0.3
UPDATE_MARKER_KEY = "callwalk_last_update"


# ===== Scheduler =====


class TimerHandle:
    def __init__(self, deadline: float, seq: int, callback: Callable[[], None]):
        self.deadline = deadline
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.deadline, self.seq) < (other.deadline, other.seq)


class Scheduler:
    """Single-threaded timer queue driven by an injectable clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._heap: List[TimerHandle] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.clock() + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._heap, handle)
        return handle

    def next_deadline(self) -> Optional[float]:
        self._drop_cancelled()
        return self._heap[0].deadline if self._heap else None

    def run_pending(self) -> int:
        """Run every timer whose deadline has passed. Returns how many ran."""
        ran = 0
        while True:
            self._drop_cancelled()
            if not self._heap or self._heap[0].deadline > self.clock():
                return ran
            handle = heapq.heappop(self._heap)
            handle.cancelled = True
            handle.callback()
            ran += 1

    def cancel_all(self) -> None:
        for handle in self._heap:
            handle.cancelled = True
        self._heap.clear()

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)


class _Debounce:
    """Single shared timer, reset on every ``touch``."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def touch(self) -> None:
        self.cancel()
        self._handle = self.scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()


# ===== Write queue =====


class WriteQueue:
    def __init__(
        self,
        storage: Storage,
        scheduler: Scheduler,
        delay: float = SAVE_DEBOUNCE_SECONDS,
    ):
        self.storage = storage
        self._queue: Dict[str, Any] = {}
        self._timer = _Debounce(scheduler, delay, self.flush)
        self.failed_keys: List[str] = []

    def save(self, key: str, value: Any) -> None:
        self._queue[key] = value
        self._timer.touch()

    def pending_keys(self) -> List[str]:
        return list(self._queue)

    def flush(self) -> List[str]:
        """Write every queued key now. A failing key is logged and dropped."""
        self._timer.cancel()
        # Swap first so a save() issued during the pass lands in the next one.
        batch, self._queue = self._queue, {}
        written: List[str] = []
        for key, value in batch.items():
            try:
                self.storage.set(key, value)
            except StorageQuotaError:
                logger.error("Storage quota exceeded for %s; write dropped", key)
                self.failed_keys.append(key)
            except StorageError as exc:
                logger.error("Write failed for %s: %s", key, exc)
                self.failed_keys.append(key)
            except Exception:
                logger.exception("Backend error while writing %s; write dropped", key)
                self.failed_keys.append(key)
            else:
                written.append(key)
        if written:
            logger.debug("Flushed %d key(s): %s", len(written), ", ".join(written))
        return written

    def cancel(self) -> None:
        self._timer.cancel()
        self._queue.clear()


# ===== Change events =====


class ChangeKind(Enum):
    STEP = "step"
    PRODUCT = "product"
    ANNOTATION = "annotation"
    IMPORT = "import"
    REMOTE = "remote"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    ids: FrozenSet[str] = field(default_factory=frozenset)


Subscriber = Callable[[ChangeEvent], None]


class ChangeChannel:
    """Typed in-process publish/subscribe."""

    def __init__(self) -> None:
        self._subscribers: List[Tuple[Subscriber, Optional[FrozenSet[ChangeKind]]]] = []

    def subscribe(
        self, callback: Subscriber, kinds: Optional[Iterable[ChangeKind]] = None
    ) -> Callable[[], None]:
        entry = (callback, frozenset(kinds) if kinds is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for callback, kinds in list(self._subscribers):
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed for %s", event.kind.value)


class UpdateNotifier:
    def __init__(
        self,
        storage: Storage,
        scheduler: Scheduler,
        channel: ChangeChannel,
        delay: float = NOTIFY_DEBOUNCE_SECONDS,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.channel = channel
        self.wall_clock = wall_clock
        self._pending: Dict[ChangeKind, Set[str]] = {}
        self._timer = _Debounce(scheduler, delay, self.flush)
        self.last_marker: Optional[Dict[str, Any]] = None

    @property
    def pending(self) -> bool:
        return bool(self._pending)

    def notify(self, kind: ChangeKind, ids: Iterable[str] = ()) -> None:
        self._pending.setdefault(kind, set()).update(ids)
        self._timer.touch()

    def flush(self) -> List[ChangeEvent]:
        self._timer.cancel()
        if not self._pending:
            return []
        pending, self._pending = self._pending, {}
        marker = {"at": int(self.wall_clock() * 1000), "token": uuid.uuid4().hex}
        try:
            self.storage.set(UPDATE_MARKER_KEY, marker)
        except StorageError as exc:
            logger.error("Could not write update marker: %s", exc)
        else:
            self.last_marker = marker
        events = [ChangeEvent(kind, frozenset(ids)) for kind, ids in pending.items()]
        for event in events:
            self.channel.publish(event)
        return events

    def cancel(self) -> None:
        self._timer.cancel()
        self._pending.clear()


class RemoteChangeWatcher:
    """Detects update markers written by other consumers of the same storage."""

    def __init__(
        self,
        storage: Storage,
        channel: ChangeChannel,
        local: Optional[UpdateNotifier] = None,
    ):
        self.storage = storage
        self.channel = channel
        self.local = local
        self._seen = self._read_marker()

    def _read_marker(self) -> Optional[Any]:
        try:
            return self.storage.get(UPDATE_MARKER_KEY)
        except StorageError as exc:
            logger.warning("Could not read update marker: %s", exc)
            return None

    def poll(self) -> bool:
        marker = self._read_marker()
        if marker is None or marker == self._seen:
            return False
        self._seen = marker
        if self.local is not None and marker == self.local.last_marker:
            return False
        self.channel.publish(ChangeEvent(ChangeKind.REMOTE))
        return True
