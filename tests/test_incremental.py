import pytest

from shakesync.configure import Configuration
from shakesync.filter import CHECKPOINT_KEY
from shakesync.incremental import (
    CHECKPOINT_OFFSET,
    CHECKPOINT_RUN_ID,
    CHECKPOINT_VERSION,
    CommandRouter,
    CommandSender,
)
from shakesync.sync_utils import CmdDetail, DelayTracker, SyncStatus


def make_options(**changes):
    options = Configuration(target_db=-1, sender_count=1024, sender_size=65535)
    for name, value in changes.items():
        setattr(options, name, value)
    return options


class FakeConn:
    def __init__(self):
        self.sent = []
        self.flushes = 0

    def send(self, cmd, *args):
        self.sent.append((cmd, *args))

    def flush(self):
        self.flushes += 1


class FakeMetric:
    def __init__(self):
        self.calls = []

    def add_pull_cmd_count(self, value):
        self.calls.append(("pull", value))

    def add_bypass_cmd_count(self, value):
        self.calls.append(("bypass", value))

    def add_push_cmd_count(self, value):
        self.calls.append(("push", value))

    def add_network_flow(self, value):
        self.calls.append(("flow", value))


# ---- router ----


def test_start_commands_empty_for_db0():
    router = CommandRouter(make_options())
    assert router.start_commands() == []


def test_start_commands_select_for_resumed_db():
    router = CommandRouter(make_options(), start_db_id=3, full_sync_offset=100)
    assert router.start_commands() == [
        CmdDetail(cmd="select", args=[b"3"], offset=100, db=3)
    ]


def test_route_passes_plain_command():
    router = CommandRouter(make_options(), full_sync_offset=100)
    result = router.route("set", [b"k", b"v"], 7)
    assert result == CmdDetail(cmd="set", args=[b"k", b"v"], offset=107, db=-1)


def test_route_select_passthrough_without_mapping():
    router = CommandRouter(make_options())
    result = router.route("select", [b"2"], 0)
    assert result.cmd == "select"
    assert result.args == [b"2"]
    assert router.select_db == 2


def test_route_select_filtered_db_bypasses_following_commands():
    status = SyncStatus()
    router = CommandRouter(make_options(filter_db_blacklist=["1"]), status)
    assert router.route("select", [b"1"], 0) is None
    assert router.route("set", [b"k", b"v"], 1) is None
    assert router.route("ping", [], 2) is None
    assert status.incr_sync_filter == 3
    assert router.route("select", [b"0"], 3) is not None
    assert router.route("set", [b"k", b"v"], 4) is not None


def test_route_select_rewritten_to_target_db():
    status = SyncStatus()
    router = CommandRouter(make_options(target_db=5), status, full_sync_offset=10)
    first = router.route("select", [b"0"], 1)
    assert first == CmdDetail(cmd="SELECT", args=[b"5"], offset=11, db=5)
    assert router.route("select", [b"1"], 2) is None
    assert status.incr_sync_filter == 1
    assert router.route("set", [b"k", b"v"], 3).db == 5


def test_route_select_uses_db_map():
    router = CommandRouter(make_options(target_db_map={1: 4}))
    mapped = router.route("select", [b"1"], 0)
    assert mapped.cmd == "SELECT"
    assert mapped.args == [b"4"]
    assert router.last_db == 4
    assert router.route("select", [b"1"], 1) is None


def test_route_ignores_opinfo_and_sentinel_hello():
    status = SyncStatus()
    router = CommandRouter(make_options(), status)
    assert router.route("opinfo", [b"x"], 0) is None
    assert router.route("publish", [b"__sentinel__:hello", b"msg"], 0) is None
    assert router.route("publish", [b"chan", b"msg"], 0) is not None
    assert status.incr_sync_filter == 2


def test_route_rejects_filtered_key():
    router = CommandRouter(make_options(filter_key_blacklist=["x"]))
    assert router.route("set", [b"xyz", b"1"], 0) is None
    kept = router.route("mset", [b"xyz", b"1", b"abc", b"2"], 0)
    assert kept.args == [b"abc", b"2"]


def test_route_bad_select_raises():
    router = CommandRouter(make_options())
    with pytest.raises(ValueError):
        router.route("select", [b"abc"], 0)
    with pytest.raises(ValueError):
        router.route("select", [b"1", b"2"], 0)


def test_route_reports_metric_hooks():
    metric = FakeMetric()
    router = CommandRouter(make_options(), metric=metric)
    router.route("opinfo", [], 0)
    assert metric.calls == [("pull", 1), ("bypass", 1)]


# ---- sender ----


def test_push_caches_until_tick():
    conn = FakeConn()
    status = SyncStatus()
    sender = CommandSender(conn, make_options(), status)
    assert sender.push(CmdDetail("set", [b"k", b"v"])) is False
    assert conn.sent == []
    assert len(sender.cached) == 1
    assert status.w_commands == 1
    assert status.w_bytes == len("set") + 2
    assert sender.tick(1) is False
    assert sender.tick(0) is True
    assert conn.sent == [("set", b"k", b"v")]
    assert conn.flushes == 1
    assert sender.cached == ()
    assert sender.cached_size == 0


def test_tick_with_empty_cache_does_nothing():
    conn = FakeConn()
    sender = CommandSender(conn, make_options())
    assert sender.tick(0) is False
    assert conn.flushes == 0


def test_push_flushes_at_sender_count():
    conn = FakeConn()
    sender = CommandSender(conn, make_options(sender_count=2))
    assert sender.push(CmdDetail("set", [b"a", b"1"])) is False
    assert sender.push(CmdDetail("set", [b"b", b"2"])) is True
    assert conn.sent == [("set", b"a", b"1"), ("set", b"b", b"2")]


def test_push_flushes_at_sender_size():
    conn = FakeConn()
    sender = CommandSender(conn, make_options(sender_size=4))
    assert sender.push(CmdDetail("set", [b"a", b"1"])) is True
    assert conn.flushes == 1


def test_multi_exec_are_dropped_and_act_as_barriers():
    conn = FakeConn()
    sender = CommandSender(conn, make_options())
    sender.push(CmdDetail("set", [b"a", b"1"]))
    sender.push(CmdDetail("multi"))
    assert conn.sent == [("set", b"a", b"1")]
    sender.push(CmdDetail("incr", [b"b"]))
    sender.push(CmdDetail("exec"))
    assert conn.sent == [("set", b"a", b"1"), ("incr", b"b")]
    assert sender.cached == ()
    assert conn.flushes == 2


def test_select_flushes_previous_batch():
    conn = FakeConn()
    sender = CommandSender(conn, make_options())
    sender.push(CmdDetail("set", [b"a", b"1"]))
    sender.push(CmdDetail("select", [b"2"], db=2))
    assert conn.sent == [("set", b"a", b"1")]
    assert [item.cmd for item in sender.cached] == ["select"]


def test_resume_wraps_batch_with_checkpoint():
    conn = FakeConn()
    sender = CommandSender(
        conn, make_options(), source="src", run_id="rid", enable_resume=True
    )
    sender.push(CmdDetail("set", [b"a", b"1"], offset=42, db=0))
    sender.flush()
    assert conn.sent == [
        ("multi",),
        ("set", b"a", b"1"),
        ("hset", CHECKPOINT_KEY, f"src-{CHECKPOINT_RUN_ID}", "rid"),
        ("hset", CHECKPOINT_KEY, f"src-{CHECKPOINT_VERSION}", sender.checkpoint_version),
        ("hset", CHECKPOINT_KEY, f"src-{CHECKPOINT_OFFSET}", 42),
        ("exec",),
    ]
    conn.sent.clear()
    sender.push(CmdDetail("set", [b"b", b"2"], offset=50, db=0))
    sender.flush()
    assert conn.sent == [
        ("multi",),
        ("set", b"b", b"2"),
        ("hset", CHECKPOINT_KEY, f"src-{CHECKPOINT_OFFSET}", 50),
        ("exec",),
    ]


def test_resume_single_ping_is_not_wrapped():
    conn = FakeConn()
    sender = CommandSender(conn, make_options(), enable_resume=True)
    sender.push(CmdDetail("ping"))
    sender.flush()
    assert conn.sent == [("ping",)]


def test_send_id_counts_and_feeds_delay_tracker():
    conn = FakeConn()
    tracker = DelayTracker(8192)
    sender = CommandSender(
        conn, make_options(metric=True), enable_resume=True, delay_tracker=tracker
    )
    sender.push(CmdDetail("set", [b"a", b"1"], offset=1))
    sender.flush()
    # multi + command + run id/version + offset/exec
    assert sender.send_id == 6
    assert len(tracker) == 4
    assert tracker.poll().id == 1


def test_sender_metric_hooks():
    metric = FakeMetric()
    sender = CommandSender(FakeConn(), make_options(), metric=metric)
    sender.push(CmdDetail("set", [b"k", b"v"]))
    assert metric.calls == [("push", 1), ("flow", 5)]
    assert sender.cached_size == 5