"""Per-syncer counters, their REST view and a Prometheus text rendering."""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Callable, Iterator, Sequence
from typing import Any

logger = logging.getLogger(__name__)

UPDATE_INTERVAL = 10  # seconds between printed reports
METRIC_NAMESPACE = "redisshake"
DB_SYNCER_LABEL = "db_syncer"
MAX_FLOAT = sys.float_info.max


class Percent:
    """A ratio accumulated from dividend and divisor increments."""

    def __init__(self) -> None:
        self.dividend = 0
        self.divisor = 0
        self._lock = threading.Lock()

    def add(self, dividend: int, divisor: int) -> None:
        """Add to both parts of the ratio."""
        with self._lock:
            self.dividend += dividend
            self.divisor += divisor

    def get(self, as_string: bool) -> str | float:
        """Return the ratio, as ``"%.2f"`` text or a float.

        With nothing accumulated the result is ``"null"`` or the largest float.
        """
        with self._lock:
            dividend, divisor = self.dividend, self.divisor
        if divisor == 0:
            return "null" if as_string else MAX_FLOAT
        ratio = dividend / divisor
        return f"{ratio:.2f}" if as_string else ratio

    def reset(self) -> None:
        """Clear both parts."""
        with self._lock:
            self.dividend = 0
            self.divisor = 0


class Combine:
    """A running total together with a value that is reset periodically."""

    def __init__(self) -> None:
        self.total = 0
        self.value = 0
        self._lock = threading.Lock()

    def add(self, value: int) -> None:
        """Add to both the periodic value and the total."""
        with self._lock:
            self.value += value
            self.total += value

    def reset(self) -> None:
        """Clear the periodic value; the total is kept."""
        with self._lock:
            self.value = 0


class Metric:
    """Counters of one sync link."""

    def __init__(self, syncer_id: int = 0) -> None:
        self.syncer_id = syncer_id
        self.pull_cmd_count = Combine()
        self.bypass_cmd_count = Combine()
        self.push_cmd_count = Combine()
        self.success_cmd_count = Combine()
        self.fail_cmd_count = Combine()
        self.delay = Percent()  # ms
        self.avg_delay = Percent()  # ms
        self.network_flow = Combine()
        self.full_sync_progress = 0
        self.fake_slave_delay_offset = 0

    def add_pull_cmd_count(self, value: int) -> None:
        self.pull_cmd_count.add(value)

    def add_bypass_cmd_count(self, value: int) -> None:
        self.bypass_cmd_count.add(value)

    def add_push_cmd_count(self, value: int) -> None:
        self.push_cmd_count.add(value)

    def add_success_cmd_count(self, value: int) -> None:
        self.success_cmd_count.add(value)

    def add_fail_cmd_count(self, value: int) -> None:
        self.fail_cmd_count.add(value)

    def add_delay(self, value: int) -> None:
        """Record one delay sample in milliseconds."""
        self.delay.add(value, 1)
        self.avg_delay.add(value, 1)

    def add_network_flow(self, value: int) -> None:
        self.network_flow.add(value)

    def avg_delay_float(self) -> float:
        """Average delay over the whole run, or the largest float if none."""
        value = self.avg_delay.get(False)
        return value if isinstance(value, float) else MAX_FLOAT

    def reset_second(self) -> None:
        """Clear the per-second values."""
        for item in (
            self.pull_cmd_count,
            self.bypass_cmd_count,
            self.push_cmd_count,
            self.success_cmd_count,
            self.fail_cmd_count,
            self.delay,
            self.network_flow,
        ):
            item.reset()


_COUNTERS: tuple[tuple[str, str, str], ...] = (
    ("pull_cmd_count_total", "RedisShake pull redis cmd count in total", "pull_cmd_count"),
    ("bypass_cmd_count_total", "RedisShake bypass redis cmd count in total", "bypass_cmd_count"),
    ("push_cmd_count_total", "RedisShake push redis cmd count in total", "push_cmd_count"),
    ("success_cmd_count_total", "RedisShake push redis cmd count in total", "success_cmd_count"),
    ("fail_cmd_count_total", "RedisShake push redis cmd count in total", "fail_cmd_count"),
    ("network_flow_total_in_bytes", "RedisShake total network flow in total (byte)", "network_flow"),
)

_GAUGES: tuple[tuple[str, str, str], ...] = (
    ("full_sync_process_percent", "RedisShake full sync process (%)", "full_sync_progress"),
    ("fake_slave_delay_offset", "RedisShake fake slave delay offset", "fake_slave_delay_offset"),
)

_AVERAGE_DELAY = ("average_delay_in_ms", "RedisShake average delay (ms)")


def _format_number(value: float | int) -> str:
    if isinstance(value, int):
        return str(value)
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _family(name: str, help_text: str, kind: str, samples: list[tuple[int, float | int]]) -> list[str]:
    if not samples:
        return []
    full = f"{METRIC_NAMESPACE}_{name}"
    lines = [f"# HELP {full} {help_text}", f"# TYPE {full} {kind}"]
    for syncer_id, value in sorted(samples, key=lambda pair: str(pair[0])):
        lines.append(f'{full}{{{DB_SYNCER_LABEL}="{syncer_id}"}} {_format_number(value)}')
    return lines


class MetricRegistry:
    """All metrics of a run, keyed by syncer id."""

    def __init__(self) -> None:
        self._metrics: dict[int, Metric] = {}
        self._lock = threading.Lock()

    def add(self, syncer_id: int) -> Metric:
        """Create the metric for ``syncer_id`` unless it exists; return it."""
        with self._lock:
            metric = self._metrics.get(syncer_id)
            if metric is None:
                metric = Metric(syncer_id)
                self._metrics[syncer_id] = metric
            return metric

    def get(self, syncer_id: int) -> Metric:
        """Return the metric for ``syncer_id``; raise KeyError if none."""
        with self._lock:
            try:
                return self._metrics[syncer_id]
            except KeyError:
                raise KeyError(f"no metric for syncer[{syncer_id}]") from None

    def __contains__(self, syncer_id: object) -> bool:
        with self._lock:
            return syncer_id in self._metrics

    def __iter__(self) -> Iterator[Metric]:
        with self._lock:
            return iter(list(self._metrics.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def render_prometheus(self, total: int) -> str:
        """Render all metrics in the Prometheus text format.

        The average delay gauge is given for syncer ids below ``total``.
        """
        metrics = sorted(self, key=lambda m: m.syncer_id)
        lines: list[str] = []
        for name, help_text, attr in _COUNTERS:
            samples = [(m.syncer_id, getattr(m, attr).total) for m in metrics]
            lines.extend(_family(name, help_text, "counter", samples))
        for name, help_text, attr in _GAUGES:
            samples = [(m.syncer_id, getattr(m, attr)) for m in metrics]
            lines.extend(_family(name, help_text, "gauge", samples))
        delays = [(m.syncer_id, m.avg_delay_float()) for m in metrics if 0 <= m.syncer_id < total]
        lines.extend(_family(*_AVERAGE_DELAY, "gauge", delays))
        return "\n".join(lines) + "\n" if lines else ""

    def start(
        self,
        stop_event: threading.Event,
        *,
        interval: float = 1.0,
        print_log: bool = False,
        report: Callable[[], Any] | None = None,
    ) -> threading.Thread:
        """Reset per-second values every ``interval`` until ``stop_event`` is set.

        Every UPDATE_INTERVAL ticks, with ``print_log``, the result of
        ``report`` is logged as JSON.
        """

        def loop() -> None:
            tick = 0
            while not stop_event.wait(interval):
                tick += 1
                if print_log and report is not None and tick % UPDATE_INTERVAL == 0:
                    try:
                        logger.info("%s", json.dumps(report(), default=str))
                    except (TypeError, ValueError) as exc:
                        logger.info("marshal metric stat error[%s]", exc)
                for metric in self:
                    metric.reset_second()

        thread = threading.Thread(target=loop, name="metric-reset", daemon=True)
        thread.start()
        return thread


REST_FIELDS: tuple[str, ...] = (
    "StartTime",
    "PullCmdCount",
    "PullCmdCountTotal",
    "BypassCmdCount",
    "BypassCmdCountTotal",
    "PushCmdCount",
    "PushCmdCountTotal",
    "SuccessCmdCount",
    "SuccessCmdCountTotal",
    "FailCmdCount",
    "FailCmdCountTotal",
    "Delay",
    "AvgDelay",
    "NetworkSpeed",
    "NetworkFlowTotal",
    "FullSyncProgress",
    "Status",
    "SenderBufCount",
    "ProcessingCmdCount",
    "TargetDBOffset",
    "SourceDBOffset",
    "SourceMasterDBOffset",
    "SourceAddress",
    "TargetAddress",
    "Details",
)

_DETAIL_FIELDS = (
    "SenderBufCount",
    "ProcessingCmdCount",
    "TargetDBOffset",
    "SourceDBOffset",
    "SourceMasterDBOffset",
    "SourceAddress",
    "TargetAddress",
    "Details",
)


def build_metric_rest(
    registry: MetricRegistry,
    details: Sequence[dict[str, Any]] | None,
    start_time: Any,
    status: Any,
    total: int,
) -> list[dict[str, Any]]:
    """Build the REST view of the metrics, one record per sync link.

    Without details a single record carrying only start time and status
    is returned; links without a metric yield an empty record.
    """
    if not details:
        record = dict.fromkeys(REST_FIELDS)
        record["StartTime"] = start_time
        record["Status"] = status
        return [record]

    result: list[dict[str, Any]] = []
    for syncer_id in range(total):
        record = dict.fromkeys(REST_FIELDS)
        if syncer_id not in registry:
            result.append(record)
            continue
        metric = registry.get(syncer_id)
        detail = details[syncer_id] if syncer_id < len(details) else {}
        record.update(
            StartTime=start_time,
            PullCmdCount=metric.pull_cmd_count.value,
            PullCmdCountTotal=metric.pull_cmd_count.total,
            BypassCmdCount=metric.bypass_cmd_count.value,
            BypassCmdCountTotal=metric.bypass_cmd_count.total,
            PushCmdCount=metric.push_cmd_count.value,
            PushCmdCountTotal=metric.push_cmd_count.total,
            SuccessCmdCount=metric.success_cmd_count.value,
            SuccessCmdCountTotal=metric.success_cmd_count.total,
            FailCmdCount=metric.fail_cmd_count.value,
            FailCmdCountTotal=metric.fail_cmd_count.total,
            Delay=f"{metric.delay.get(True)} ms",
            AvgDelay=f"{metric.avg_delay.get(True)} ms",
            NetworkSpeed=metric.network_flow.value,
            NetworkFlowTotal=metric.network_flow.total,
            FullSyncProgress=metric.full_sync_progress,
            Status=status,
        )
        for name in _DETAIL_FIELDS:
            record[name] = detail.get(name)
        result.append(record)
    return result