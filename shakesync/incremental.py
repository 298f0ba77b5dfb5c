"""Incremental sync: route source commands and batch them to the target."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from shakesync.filter import (
    CHECKPOINT_KEY,
    filter_commands,
    filter_db,
    handle_filter_key_with_command,
)
from shakesync.sync_utils import (
    BarrierStatus,
    CmdDetail,
    DelayTracker,
    FlushStatus,
    SyncStatus,
    barrier_status,
)

logger = logging.getLogger(__name__)

CHECKPOINT_RUN_ID = "run_id"
CHECKPOINT_VERSION = "version"
CHECKPOINT_OFFSET = "offset"
DEFAULT_CHECKPOINT_VERSION = 1

SENTINEL_HELLO_CHANNEL = b"__sentinel__:hello"

_DB_NUMBER = re.compile(r"[+-]?[0-9]+")


class TargetConnection(Protocol):
    """Pipelined connection to the target: queue commands, then flush."""

    def send(self, cmd: str, *args: Any) -> None: ...

    def flush(self) -> None: ...


def _hook(metric: Any, name: str, value: int) -> None:
    if metric is not None:
        getattr(metric, name)(value)


def _parse_db(raw: bytes) -> int:
    text = raw.decode("utf-8", "surrogateescape")
    if not _DB_NUMBER.fullmatch(text):
        raise ValueError(f"parse db = {text} failed")
    return int(text, 10)


class CommandRouter:
    """Decides, command by command, what of the source stream reaches the target.

    Keeps the current select state across calls, counts filtered
    commands and rewrites ``select`` according to the target db options.
    """

    def __init__(
        self,
        options: Any,
        status: SyncStatus | None = None,
        *,
        start_db_id: int = 0,
        full_sync_offset: int = 0,
        metric: Any = None,
    ) -> None:
        self.options = options
        self.status = status if status is not None else SyncStatus()
        self.start_db_id = start_db_id
        self.full_sync_offset = full_sync_offset
        self.metric = metric
        self.last_db = -1
        self.select_db = -1
        self.bypass = False

    def start_commands(self) -> list[CmdDetail]:
        """Commands to send before the stream: a select when resuming in a non-zero db."""
        if self.start_db_id == 0:
            return []
        logger.info("last dbid[%s] != 0, send 'select' first", self.start_db_id)
        return [
            CmdDetail(
                cmd="select",
                args=[str(self.start_db_id).encode()],
                offset=self.full_sync_offset,
                db=self.start_db_id,
            )
        ]

    def _filtered(self, cmd: str) -> None:
        self.status.incr_sync_filter += 1
        _hook(self.metric, "add_bypass_cmd_count", 1)
        logger.debug("ignore command[%s]", cmd)

    def _select(self, db: int, incr_offset: int) -> CmdDetail | None:
        if db == self.last_db:
            self._filtered("select")
            return None
        self.last_db = db
        return CmdDetail(
            cmd="SELECT",
            args=[str(db).encode()],
            offset=self.full_sync_offset + incr_offset,
            db=db,
        )

    def route(
        self, cmd: str, argv: Sequence[bytes], incr_offset: int
    ) -> CmdDetail | None:
        """Return the command to forward, or None if it is filtered out.

        Raises ValueError for a malformed ``select``.
        """
        _hook(self.metric, "add_pull_cmd_count", 1)
        is_select = False
        ignore_cmd = False
        ignore_sentinel = False
        lowered = cmd.lower()

        if cmd != "ping":
            if lowered == "select":
                if len(argv) != 1:
                    raise ValueError(f"select command len(args) = {len(argv)}")
                db = _parse_db(argv[0])
                self.bypass = filter_db(db, self.options)
                is_select = True
                self.select_db = db
            elif filter_commands(cmd, self.options):
                ignore_cmd = True
            elif (
                lowered == "publish"
                and argv
                and argv[0].lower() == SENTINEL_HELLO_CHANNEL
            ):
                ignore_sentinel = True

            if self.bypass or ignore_cmd or ignore_sentinel:
                self._filtered(cmd)
                return None

        new_argv, reject = handle_filter_key_with_command(cmd, argv, self.options)
        if self.bypass or ignore_cmd or reject:
            self._filtered(cmd)
            return None

        if is_select:
            if self.options.target_db != -1:
                return self._select(self.options.target_db, incr_offset)
            mapped = self.options.target_db_map.get(self.select_db)
            if mapped is not None:
                return self._select(mapped, incr_offset)

        return CmdDetail(
            cmd=cmd,
            args=list(new_argv),
            offset=self.full_sync_offset + incr_offset,
            db=self.last_db,
        )


class CommandSender:
    """Caches commands and pipelines them to the target in batches.

    With resuming enabled each batch is wrapped in a transaction that also
    records the checkpoint offset (and, once per db, run id and version).
    """

    def __init__(
        self,
        conn: TargetConnection,
        options: Any,
        status: SyncStatus | None = None,
        *,
        source: str = "",
        run_id: str = "",
        checkpoint_name: str = CHECKPOINT_KEY,
        enable_resume: bool | None = None,
        checkpoint_version: int = DEFAULT_CHECKPOINT_VERSION,
        delay_tracker: DelayTracker | None = None,
        metric: Any = None,
    ) -> None:
        self.conn = conn
        self.options = options
        self.status = status if status is not None else SyncStatus()
        self.run_id = run_id
        self.checkpoint_name = checkpoint_name
        self.enable_resume = (
            options.resume_from_break_point if enable_resume is None else enable_resume
        )
        self.checkpoint_version = checkpoint_version
        self.delay_tracker = delay_tracker
        self.metric = metric
        self.checkpoint_run_id = f"{source}-{CHECKPOINT_RUN_ID}"
        self.checkpoint_version_field = f"{source}-{CHECKPOINT_VERSION}"
        self.checkpoint_offset = f"{source}-{CHECKPOINT_OFFSET}"
        self.barrier = BarrierStatus.NO
        self.send_id = 0
        self._cached: list[CmdDetail] = []
        self._cached_size = 0
        self._run_id_dbs: set[int] = set()

    @property
    def cached(self) -> tuple[CmdDetail, ...]:
        """Commands waiting for the next flush."""
        return tuple(self._cached)

    @property
    def cached_size(self) -> int:
        """Bytes of the commands waiting for the next flush."""
        return self._cached_size

    def _add_send_id(self, value: int) -> None:
        self.send_id += value
        if self.options.metric and self.delay_tracker is not None:
            self.delay_tracker.offer(self.send_id)

    def flush(self) -> None:
        """Send every cached command to the target and clear the cache."""
        if not self._cached:
            return
        last = self._cached[-1]
        need_batch = self.enable_resume and not (
            len(self._cached) == 1 and last.cmd == "ping"
        )

        offset = 0
        if need_batch:
            self._add_send_id(1)
            offset = last.offset
            self.conn.send("multi")

        self._add_send_id(len(self._cached))
        for item in self._cached:
            self.conn.send(item.cmd, *item.args)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("send command[%s]: [%s]", self.send_id, item)

        if need_batch:
            if last.db not in self._run_id_dbs:
                self._run_id_dbs.add(last.db)
                self._add_send_id(2)
                self.conn.send(
                    "hset", self.checkpoint_name, self.checkpoint_run_id, self.run_id
                )
                self.conn.send(
                    "hset",
                    self.checkpoint_name,
                    self.checkpoint_version_field,
                    self.checkpoint_version,
                )
            self._add_send_id(2)
            self.conn.send("hset", self.checkpoint_name, self.checkpoint_offset, offset)
            self.conn.send("exec")

        self.conn.flush()
        self._cached.clear()
        self._cached_size = 0

    def _flush_if_needed(self, flush_status: FlushStatus) -> bool:
        if (
            len(self._cached) < self.options.sender_count
            and self._cached_size < self.options.sender_size
            and flush_status is FlushStatus.NO
        ):
            return False
        self.flush()
        return True

    def push(self, item: CmdDetail) -> bool:
        """Cache one command; return True if the batch was flushed afterwards."""
        length = item.size
        self.barrier, flush_status = barrier_status(item.cmd, self.barrier)
        logger.debug(
            "command[%s] with barrier status[%s] and flush status[%s]",
            item.cmd,
            self.barrier.value,
            int(flush_status),
        )
        if flush_status is FlushStatus.YES:
            self.flush()

        if self.barrier not in (BarrierStatus.HOLD_START, BarrierStatus.HOLD_END):
            self._cached.append(item)
            self._cached_size += length
            self.status.w_commands += 1
            self.status.w_bytes += length
            _hook(self.metric, "add_push_cmd_count", 1)
            _hook(self.metric, "add_network_flow", length)

        return self._flush_if_needed(FlushStatus.NO)

    def tick(self, pending: int) -> bool:
        """Periodic check; flush when nothing is pending upstream. Return True if flushed."""
        if pending == 0 and self._cached:
            flush_status = FlushStatus.YES
        else:
            flush_status = FlushStatus.NO
        return self._flush_if_needed(flush_status)