import time

import pytest

from blocky import evt
from blocky.api import Router
from blocky.config import PrometheusConfig
from blocky.lists import ListCacheType
from blocky.metrics import (
    Counter,
    Gauge,
    GaugeVec,
    Registry,
    register_event_listeners,
    register_metric,
    registry,
    start,
)


def test_gauge_set_and_samples():
    gauge = Gauge("test_gauge", "a gauge")
    gauge.set(2.5)
    assert gauge.samples() == [("test_gauge", {}, 2.5)]


@pytest.mark.parametrize("times", [0, 1, 5])
def test_counter_counts_increments(times):
    counter = Counter("test_counter", "a counter")
    for _ in range(times):
        counter.inc()
    assert counter.samples() == [("test_counter", {}, float(times))]


def test_gauge_vec_children_are_reused():
    vec = GaugeVec("test_vec", "a vec", ["group"])
    vec.with_label_values("gr1").set(3)
    assert vec.with_label_values("gr1").value == 3.0
    assert vec.samples() == [("test_vec", {"group": "gr1"}, 3.0)]


def test_gauge_vec_rejects_wrong_label_count():
    vec = GaugeVec("test_vec", "a vec", ["group"])
    with pytest.raises(ValueError):
        vec.with_label_values("a", "b")


def test_registry_rejects_duplicate_names():
    reg = Registry()
    reg.register(Gauge("dup", "first"))
    with pytest.raises(ValueError):
        reg.register(Gauge("dup", "second"))


def test_registry_render_format():
    reg = Registry()
    vec = GaugeVec("blocky_blacklist_cache", "Number of entries in the blacklist cache", ["group"])
    vec.with_label_values("gr1").set(3)
    reg.register(vec)
    assert reg.render() == (
        "# HELP blocky_blacklist_cache Number of entries in the blacklist cache\n"
        "# TYPE blocky_blacklist_cache gauge\n"
        'blocky_blacklist_cache{group="gr1"} 3\n'
    )


def test_registry_render_skips_empty_vec():
    reg = Registry()
    reg.register(GaugeVec("empty_vec", "nothing", ["group"]))
    assert reg.render() == ""


def test_register_metric_ignores_duplicates():
    register_metric(Gauge("test_register_metric_unique", "first"))
    register_metric(Gauge("test_register_metric_unique", "second"))
    rendered = registry().render()
    assert rendered.count("# HELP test_register_metric_unique") == 1
    assert "# HELP test_register_metric_unique first" in rendered


def test_start_exposes_registry():
    register_metric(Gauge("test_exposed_metric", "exposed"))
    router = Router()
    start(router, PrometheusConfig(enable=True, path="/metrics"))
    response = router.dispatch("GET", "/metrics")
    assert response.status == 200
    assert b"test_exposed_metric" in response.body


def test_start_disabled_registers_nothing():
    router = Router()
    start(router, PrometheusConfig(enable=False, path="/metrics"))
    assert router.dispatch("GET", "/metrics").status == 404


def test_blocking_enabled_gauge_follows_events():
    bus = evt.EventBus()
    metrics = register_event_listeners(bus)
    enabled = metrics["blocky_blocking_enabled"]
    assert enabled.value == 1.0
    bus.publish(evt.BLOCKING_ENABLED_EVENT, False)
    assert enabled.value == 0.0
    bus.publish(evt.BLOCKING_ENABLED_EVENT, True)
    assert enabled.value == 1.0


def test_group_changed_updates_list_gauges():
    bus = evt.EventBus()
    metrics = register_event_listeners(bus)
    before = int(time.time())
    bus.publish(evt.BLOCKING_CACHE_GROUP_CHANGED, ListCacheType.BLACKLIST, "gr1", 7)
    assert metrics["blocky_blacklist_cache"].samples() == [
        ("blocky_blacklist_cache", {"group": "gr1"}, 7.0)
    ]
    assert metrics["blocky_whitelist_cache"].samples() == []
    assert metrics["blocky_last_list_group_refresh"].value >= before

    bus.publish(evt.BLOCKING_CACHE_GROUP_CHANGED, ListCacheType.WHITELIST, "gr2", 4)
    assert metrics["blocky_whitelist_cache"].with_label_values("gr2").value == 4.0


def test_caching_events_update_counters():
    bus = evt.EventBus()
    metrics = register_event_listeners(bus)
    bus.publish(evt.CACHING_RESULT_CACHE_MISS, "example.com")
    bus.publish(evt.CACHING_RESULT_CACHE_HIT, "example.com")
    bus.publish(evt.CACHING_RESULT_CACHE_HIT, "example.com")
    bus.publish(evt.CACHING_DOMAIN_PREFETCHED, "example.com")
    bus.publish(evt.CACHING_PREFETCH_CACHE_HIT, "example.com")
    bus.publish(evt.CACHING_RESULT_CACHE_CHANGED, 42)
    bus.publish(evt.CACHING_DOMAINS_TO_PREFETCH_COUNT_CHANGED, 11)

    assert metrics["blocky_cache_miss_count"].value == 1.0
    assert metrics["blocky_cache_hit_count"].value == 2.0
    assert metrics["blocky_prefetch_count"].value == 1.0
    assert metrics["blocky_prefetch_hit_count"].value == 1.0
    assert metrics["blocky_cache_entry_count"].value == 42.0
    assert metrics["blocky_prefetch_domain_name_cache_count"].value == 11.0


def test_application_started_sets_build_info():
    bus = evt.EventBus()
    metrics = register_event_listeners(bus)
    bus.publish(evt.APPLICATION_STARTED, "v1.0", "20210101-000000")
    assert metrics["blocky_build_info"].samples() == [
        ("blocky_build_info", {"version": "v1.0", "build_time": "20210101-000000"}, 1.0)
    ]