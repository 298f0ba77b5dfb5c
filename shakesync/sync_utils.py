"""Shared pieces of the incremental syncer: barriers, commands, counters, delay sampling."""

from __future__ import annotations

import datetime
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum

logger = logging.getLogger(__name__)

INCR_SYNC_READ_TIMEOUT = datetime.timedelta(minutes=10)
INCR_SYNC_WRITE_TIMEOUT = datetime.timedelta(minutes=10)


class BarrierStatus(str, Enum):
    """Whether a command forces the pending batch out, and transaction state."""

    NO = ""
    ADD = "add barrier"
    HOLD_START = "start barrier"
    HOLDING = "holding barrier"
    HOLD_END = "release barrier"


class FlushStatus(IntEnum):
    """Whether the pending batch must be flushed before the current command."""

    NO = 0
    YES = 1


_BARRIER_MAP = {
    "select": BarrierStatus.ADD,
    "multi": BarrierStatus.HOLD_START,
    "exec": BarrierStatus.HOLD_END,
}

_OPEN_STATES = (BarrierStatus.NO, BarrierStatus.ADD, BarrierStatus.HOLD_END)


def barrier_status(
    cmd: str, prev_status: BarrierStatus | str
) -> tuple[BarrierStatus, FlushStatus]:
    """Return the next barrier status and whether to flush before ``cmd``."""
    try:
        prev = BarrierStatus(prev_status)
    except ValueError:
        raise ValueError(f"illegal barrier status[{prev_status}]") from None

    if prev in _OPEN_STATES:
        status = _BARRIER_MAP.get(cmd)
        if status is None:
            return BarrierStatus.NO, FlushStatus.NO
        return status, FlushStatus.YES

    if _BARRIER_MAP.get(cmd) is BarrierStatus.HOLD_END:
        return BarrierStatus.HOLD_END, FlushStatus.YES
    return BarrierStatus.HOLDING, FlushStatus.NO


@dataclass
class CmdDetail:
    """One command queued for the target, with its replication offset and db."""

    cmd: str
    args: list[bytes] = field(default_factory=list)
    offset: int = 0
    db: int = 0

    @property
    def size(self) -> int:
        """Bytes of command name plus all arguments."""
        return len(self.cmd) + sum(len(arg) for arg in self.args)

    def __str__(self) -> str:
        parts = [self.cmd]
        parts.extend(arg.decode("utf-8", "surrogateescape") for arg in self.args)
        return " ".join(parts)


@dataclass(frozen=True)
class SyncerStat:
    """A point-in-time snapshot of the syncer counters."""

    r_bytes: int = 0
    w_bytes: int = 0
    w_commands: int = 0
    keys: int = 0
    full_sync_filter: int = 0
    incr_sync_filter: int = 0


@dataclass
class SyncStatus:
    """Live counters of one syncer."""

    r_bytes: int = 0
    w_bytes: int = 0
    w_commands: int = 0
    keys: int = 0
    full_sync_filter: int = 0
    incr_sync_filter: int = 0
    target_offset: int = 0
    source_offset: int = 0
    source_master_offset: int = 0

    def stat(self) -> SyncerStat:
        """Return a snapshot of the transfer counters."""
        return SyncerStat(
            r_bytes=self.r_bytes,
            w_bytes=self.w_bytes,
            w_commands=self.w_commands,
            keys=self.keys,
            full_sync_filter=self.full_sync_filter,
            incr_sync_filter=self.incr_sync_filter,
        )


@dataclass(frozen=True)
class DelayNode:
    """A sampled send: when it went out and its send id."""

    t: float
    id: int


class DelayTracker:
    """Bounded queue of sampled sends used to measure target reply delay."""

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"capacity[{capacity}] should be >= 0")
        self.capacity = capacity
        self._nodes: deque[DelayNode] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def offer(self, send_id: int) -> bool:
        """Sample ``send_id`` by free space; return True if a node was queued.

        Free space >= 4096 samples every id, >= 1024 every 10th, >= 128
        every 100th, otherwise every 1000th.
        """
        with self._lock:
            available = self.capacity - len(self._nodes)
            sampled = (
                available >= 4096
                or (available >= 1024 and send_id % 10 == 0)
                or (available >= 128 and send_id % 100 == 0)
                or send_id % 1000 == 0
            )
            if not sampled:
                return False
            if available <= 0:
                logger.warning("delay channel is full")
                return False
            self._nodes.append(DelayNode(t=time.time(), id=send_id))
            return True

    def poll(self) -> DelayNode | None:
        """Take the oldest node without waiting, or None if there is none."""
        with self._lock:
            return self._nodes.popleft() if self._nodes else None