# shakesync

Pure-Python building blocks for moving Redis data from one instance to
another. It uses only the standard library.

## Modules

- `shakesync.configure`: the `Configuration` dataclass with every run option,
  `parse_config(text)` for `key = value` text (blank lines and `#` comments
  are skipped, list options are separated by `;`) and `load_config(path)`.
  Both raise `ConfigError` on bad input. `Configuration.safe_copy()` returns a
  deep copy with the four password fields set to `***`.
- `shakesync.sanitize`: `sanitize_options(options, tp)` checks a configuration
  for a run type (`decode`, `restore`, `dump`, `sync`, `rump`), fills in its
  defaults in place and raises `ConfigError` on the first bad setting. It also
  sets the level of the `shakesync` logger, and adds a rotating file handler
  when `log_file` is set. The module also has these helpers:
  `parse_go_duration` (`-1h30m`, `+2.5s`, ...), `parse_fake_time` and
  `parse_target_db_map` (`"0-1;2-3"` becomes `{0: 1, 2: 3}`).
- `shakesync.filter`: `filter_commands`, `filter_key`, `filter_slot` and
  `filter_db` return `True` when something must not be passed on.
  `handle_filter_key_with_command` removes filtered keys from multi-key
  commands such as `mset` or `del`, using the `REDIS_COMMANDS` table of
  `RedisCommand` key positions. Keys starting with the checkpoint key are
  always filtered.
- `shakesync.sync_utils`: `barrier_status(cmd, prev_status)` is the state
  machine that decides when a pending batch must be flushed (`select`,
  `multi`, `exec`). The module also has `CmdDetail`, the `SyncStatus`
  counters with their `SyncerStat` snapshot, and `DelayTracker`, a bounded
  queue of sampled send ids.
- `shakesync.incremental`: `CommandRouter.route(cmd, argv, incr_offset)`
  returns the `CmdDetail` to forward, or `None` when the command is filtered.
  It handles db, command, key and sentinel-hello filtering, and rewrites
  `SELECT` according to `target_db` or `target_db_map`.
  `CommandSender.push` / `tick` / `flush` cache commands and pipeline them to a
  connection object with `send(cmd, *args)` and `flush()`. When resuming is
  enabled, each batch is wrapped in `multi`/`exec` together with `hset`
  checkpoint writes.
- `shakesync.metric`: `Percent`, `Combine`, `Metric` (per-link counters,
  `reset_second()` clears the per-second values) and `MetricRegistry`.
  `MetricRegistry.render_prometheus(total)` returns Prometheus text and
  `MetricRegistry.start(stop_event)` runs the periodic reset thread.
  `build_metric_rest(...)` builds a list of REST records.
- `shakesync.heartbeat`: `HeartbeatController` posts `HeartbeatData` as JSON to
  a URL every `interval` seconds (`start(stop_event)`) or once
  (`run_once(data)`). `parse_heartbeat_response` checks the server's answer.
- `shakesync.listpack`: `Listpack(blob)` reads a Redis listpack entry by entry
  with `next()`, `next_integer()` or iteration. Bad data raises
  `ListpackError`.
- `shakesync.reply_reader`: `ReplyReader(stream).read_next_reply()` returns an
  `ErrorReply` for `-` lines and `"ignore"` for other replies. It raises
  `ReplyError` on malformed input.
- `shakesync.scanner`: `NormalScanner` (`SCAN`), `SpecialCloudScanner`
  (`tencent_cluster` / `aliyun_cluster` scan variants) and `KeyFileScanner`
  (one key per line). Each has `scan_key()`, `end_node()` and `close()`, can be
  iterated batch by batch and works as a context manager. `new_scanner` picks
  one from the options.
- `shakesync.decode`: `format_entry(entry, kind, obj)` and `format_aux(key,
  value)` render decoded RDB values as JSON lines (`to_text`, `to_base64`
  helpers, `ObjectKind`, `DecodedEntry`).

## Example

```python
from shakesync.configure import Configuration
from shakesync.filter import handle_filter_key_with_command
from shakesync.sync_utils import BarrierStatus, barrier_status

options = Configuration(filter_key_blacklist=["x"])
new_argv, rejected = handle_filter_key_with_command(
    "mset", [b"xyz", b"1", b"abc", b"2"], options
)
# new_argv == [b"abc", b"2"], rejected is False

status, flush = barrier_status("multi", BarrierStatus.NO)
# status is BarrierStatus.HOLD_START, flush is FlushStatus.YES
```

```python
from shakesync.listpack import Listpack

lp = Listpack(b"\x09\x00\x00\x00\x01\x00\x05\x01\xff")
lp.next()   # "5"
```

## What it does not do

- There is no command-line program and no long-running sync process. The
  modules are parts to build one from.
- It opens no Redis connections of its own. The scanners and `CommandSender`
  work on client objects that you supply.
- It does not parse RDB files or the replication stream. `shakesync.decode`
  renders values that have already been decoded.
- `sanitize_options` does not query servers for their versions, checksums or
  slot layouts. It uses the `source_version` and `target_version` that are
  already set in the options.
- It runs no HTTP server. Metrics are returned as data or as Prometheus text.

## Running the tests

```
pip install -e ".[test]"
pytest
```