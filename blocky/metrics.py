"""Prometheus style metrics fed from events on the event bus."""

from __future__ import annotations

import math
import threading
import time
from typing import Any, Protocol

from blocky import evt
from blocky.api import Response, Router
from blocky.config import PrometheusConfig
from blocky.lists import ListCacheType

Sample = tuple[str, dict[str, str], float]

_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class _Collector(Protocol):
    name: str
    help: str
    kind: str

    def samples(self) -> list[Sample]: ...


class Gauge:
    """A value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.help = help
        self.labels = dict(labels or {})
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        """Set the gauge to ``value``."""
        with self._lock:
            self._value = float(value)

    def samples(self) -> list[Sample]:
        """The single sample of this gauge."""
        return [(self.name, dict(self.labels), self.value)]


class Counter:
    """A value that only goes up."""

    kind = "counter"

    def __init__(self, name: str, help: str) -> None:
        self.name = name
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def inc(self) -> None:
        """Increase the counter by one."""
        with self._lock:
            self._value += 1.0

    def samples(self) -> list[Sample]:
        """The single sample of this counter."""
        return [(self.name, {}, self.value)]


class GaugeVec:
    """A family of gauges that differ in their label values."""

    kind = "gauge"

    def __init__(self, name: str, help: str, label_names: list[str]) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._children: dict[tuple[str, ...], Gauge] = {}
        self._lock = threading.Lock()

    def with_label_values(self, *args: str) -> Gauge:
        """Return the gauge for these label values, creating it if needed."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"inconsistent label cardinality: expected {len(self.label_names)} "
                f"label values but got {len(args)}"
            )
        key = tuple(str(arg) for arg in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = Gauge(self.name, self.help, dict(zip(self.label_names, key)))
                self._children[key] = child
            return child

    def samples(self) -> list[Sample]:
        """One sample per label combination, ordered by label values."""
        with self._lock:
            children = sorted(self._children.items())
        return [sample for _, child in children for sample in child.samples()]


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n")


def _format_sample(sample: Sample) -> str:
    name, labels, value = sample
    if labels:
        rendered = ",".join(f'{key}="{_escape_label(val)}"' for key, val in labels.items())
        name = f"{name}{{{rendered}}}"
    return f"{name} {_format_value(value)}"


class Registry:
    """A set of uniquely named metrics that renders the text exposition format."""

    def __init__(self) -> None:
        self._metrics: dict[str, _Collector] = {}
        self._lock = threading.Lock()

    def register(self, metric: _Collector) -> None:
        """Add ``metric``; raises ``ValueError`` if its name is already taken."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {metric.name}"
                )
            self._metrics[metric.name] = metric

    def render(self) -> str:
        """All metrics in the Prometheus text format, ordered by name."""
        with self._lock:
            metrics = sorted(self._metrics.items())
        lines: list[str] = []
        for name, metric in metrics:
            samples = metric.samples()
            if not samples:
                continue
            lines.append(f"# HELP {name} {_escape_help(metric.help)}")
            lines.append(f"# TYPE {name} {metric.kind}")
            lines.extend(_format_sample(sample) for sample in samples)
        return "".join(f"{line}\n" for line in lines)


_registry = Registry()


def registry() -> Registry:
    """Return the global registry."""
    return _registry


def register_metric(metric: _Collector) -> None:
    """Register ``metric`` in the global registry, ignoring duplicates."""
    try:
        _registry.register(metric)
    except ValueError:
        pass


def start(router: Router, cfg: PrometheusConfig) -> None:
    """Expose the global registry on ``cfg.path`` if metrics are enabled."""
    if not cfg.enable:
        return

    def handler(_url: str) -> Response:
        return Response(body=_registry.render().encode("utf-8"), content_type=_CONTENT_TYPE)

    router.add_route("GET", cfg.path, handler)


def _register_application_listeners(event_bus: evt.EventBus) -> dict[str, Any]:
    build_info = GaugeVec(
        "blocky_build_info", "Version number and build info", ["version", "build_time"]
    )
    register_metric(build_info)

    def on_started(version: str, build_time: str) -> None:
        build_info.with_label_values(version, build_time).set(1)

    event_bus.subscribe(evt.APPLICATION_STARTED, on_started)
    return {build_info.name: build_info}


def _register_blocking_listeners(event_bus: evt.EventBus) -> dict[str, Any]:
    enabled = Gauge("blocky_blocking_enabled", "Blocking status")
    enabled.set(1)
    register_metric(enabled)

    def on_enabled(is_enabled: bool) -> None:
        enabled.set(1 if is_enabled else 0)

    event_bus.subscribe(evt.BLOCKING_ENABLED_EVENT, on_enabled)

    blacklist = GaugeVec(
        "blocky_blacklist_cache", "Number of entries in the blacklist cache", ["group"]
    )
    whitelist = GaugeVec(
        "blocky_whitelist_cache", "Number of entries in the whitelist cache", ["group"]
    )
    last_refresh = Gauge("blocky_last_list_group_refresh", "Timestamp of last list refresh")
    for metric in (blacklist, whitelist, last_refresh):
        register_metric(metric)

    def on_group_changed(list_type: ListCacheType, group: str, count: int) -> None:
        last_refresh.set(int(time.time()))
        if list_type is ListCacheType.BLACKLIST:
            blacklist.with_label_values(group).set(count)
        elif list_type is ListCacheType.WHITELIST:
            whitelist.with_label_values(group).set(count)

    event_bus.subscribe(evt.BLOCKING_CACHE_GROUP_CHANGED, on_group_changed)
    return {m.name: m for m in (enabled, blacklist, whitelist, last_refresh)}


def _register_caching_listeners(event_bus: evt.EventBus) -> dict[str, Any]:
    entry_count = Gauge("blocky_cache_entry_count", "Number of entries in cache")
    prefetch_domains = Gauge(
        "blocky_prefetch_domain_name_cache_count", "Number of entries in domain cache"
    )
    hits = Counter("blocky_cache_hit_count", "Cache hit counter")
    misses = Counter("blocky_cache_miss_count", "Cache miss counter")
    prefetches = Counter("blocky_prefetch_count", "Prefetch counter")
    prefetch_hits = Counter("blocky_prefetch_hit_count", "Prefetch hit counter")
    metrics = (entry_count, prefetch_domains, hits, misses, prefetches, prefetch_hits)
    for metric in metrics:
        register_metric(metric)

    event_bus.subscribe(
        evt.CACHING_DOMAINS_TO_PREFETCH_COUNT_CHANGED, lambda count: prefetch_domains.set(count)
    )
    event_bus.subscribe(evt.CACHING_RESULT_CACHE_MISS, lambda _domain: misses.inc())
    event_bus.subscribe(evt.CACHING_RESULT_CACHE_HIT, lambda _domain: hits.inc())
    event_bus.subscribe(evt.CACHING_DOMAIN_PREFETCHED, lambda _domain: prefetches.inc())
    event_bus.subscribe(evt.CACHING_PREFETCH_CACHE_HIT, lambda _domain: prefetch_hits.inc())
    event_bus.subscribe(evt.CACHING_RESULT_CACHE_CHANGED, lambda count: entry_count.set(count))
    return {m.name: m for m in metrics}


def register_event_listeners(event_bus: evt.EventBus | None = None) -> dict[str, Any]:
    """Create the metrics, subscribe them to ``event_bus`` and return them by name."""
    target = event_bus if event_bus is not None else evt.bus()
    created: dict[str, Any] = {}
    created.update(_register_blocking_listeners(target))
    created.update(_register_caching_listeners(target))
    created.update(_register_application_listeners(target))
    return created