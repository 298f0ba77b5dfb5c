import threading

import pytest

from shakesync.metric import (
    MAX_FLOAT,
    REST_FIELDS,
    Combine,
    Metric,
    MetricRegistry,
    Percent,
    build_metric_rest,
)


def test_percent_empty_gives_null_and_max_float():
    percent = Percent()
    assert percent.get(True) == "null"
    assert percent.get(False) == MAX_FLOAT


def test_percent_ratio_and_reset():
    percent = Percent()
    percent.add(1, 2)
    assert percent.get(True) == "0.50"
    percent.add(2, 2)
    assert percent.get(False) == pytest.approx(3 / 4)
    percent.reset()
    assert percent.get(True) == "null"


def test_combine_reset_keeps_total():
    combine = Combine()
    combine.add(5)
    combine.add(7)
    assert combine.value == 12
    assert combine.total == 12
    combine.reset()
    assert combine.value == 0
    assert combine.total == 12


def test_metric_counters_and_reset_second():
    metric = Metric(3)
    metric.add_pull_cmd_count(4)
    metric.add_bypass_cmd_count(1)
    metric.add_push_cmd_count(2)
    metric.add_success_cmd_count(6)
    metric.add_fail_cmd_count(1)
    metric.add_network_flow(100)
    metric.add_delay(10)
    assert metric.pull_cmd_count.total == 4
    assert metric.network_flow.value == 100
    metric.reset_second()
    for combine in (
        metric.pull_cmd_count,
        metric.bypass_cmd_count,
        metric.push_cmd_count,
        metric.success_cmd_count,
        metric.fail_cmd_count,
        metric.network_flow,
    ):
        assert combine.value == 0
    assert metric.success_cmd_count.total == 6
    assert metric.delay.get(True) == "null"
    assert metric.avg_delay_float() == 10.0


def test_avg_delay_float_without_samples():
    assert Metric().avg_delay_float() == MAX_FLOAT


def test_registry_add_is_idempotent_and_get_raises():
    registry = MetricRegistry()
    first = registry.add(0)
    assert registry.add(0) is first
    assert registry.get(0) is first
    assert 0 in registry
    assert len(registry) == 1
    with pytest.raises(KeyError):
        registry.get(1)


def test_render_prometheus_contains_series():
    registry = MetricRegistry()
    metric = registry.add(0)
    metric.add_pull_cmd_count(5)
    metric.full_sync_progress = 100
    registry.add(1)
    text = registry.render_prometheus(1)
    lines = text.splitlines()
    assert "# TYPE redisshake_pull_cmd_count_total counter" in lines
    assert 'redisshake_pull_cmd_count_total{db_syncer="0"} 5' in lines
    assert 'redisshake_full_sync_process_percent{db_syncer="0"} 100' in lines
    assert 'redisshake_average_delay_in_ms{db_syncer="0"} 1.7976931348623157e+308' in lines
    assert not any(
        line.startswith('redisshake_average_delay_in_ms{db_syncer="1"}') for line in lines
    )


def test_render_prometheus_empty_registry():
    assert MetricRegistry().render_prometheus(0) == ""


def test_build_metric_rest_without_details():
    registry = MetricRegistry()
    records = build_metric_rest(registry, None, "start", "incr", 1)
    assert len(records) == 1
    assert records[0]["StartTime"] == "start"
    assert records[0]["Status"] == "incr"
    assert records[0]["PullCmdCount"] is None
    assert set(records[0]) == set(REST_FIELDS)


def test_build_metric_rest_with_details():
    registry = MetricRegistry()
    metric = registry.add(0)
    metric.add_push_cmd_count(3)
    details = [{"SourceAddress": "src:1", "TargetDBOffset": 42}, {}]
    records = build_metric_rest(registry, details, "start", "full", 2)
    assert len(records) == 2
    assert records[0]["PushCmdCountTotal"] == 3
    assert records[0]["SourceAddress"] == "src:1"
    assert records[0]["TargetDBOffset"] == 42
    assert records[0]["Delay"] == "null ms"
    assert records[0]["Status"] == "full"
    assert all(value is None for value in records[1].values())


def test_registry_start_resets_and_stops():
    registry = MetricRegistry()
    metric = registry.add(0)
    metric.add_pull_cmd_count(9)
    stop = threading.Event()
    thread = registry.start(stop, interval=0.01)
    for _ in range(200):
        if metric.pull_cmd_count.value == 0:
            break
        stop.wait(0.01)
    stop.set()
    thread.join(timeout=2)
    assert metric.pull_cmd_count.value == 0
    assert metric.pull_cmd_count.total == 9
    assert not thread.is_alive()