"""Grouped domain lists loaded from URLs, local files or inline text."""

from __future__ import annotations

import ipaddress
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from enum import Enum
from itertools import chain
from typing import Iterable

import requests

from blocky import evt, log

DEFAULT_REFRESH_PERIOD = timedelta(hours=4)
DEFAULT_TIMEOUT = 60.0
_MAX_ATTEMPTS = 3


class ListCacheType(Enum):
    """Kind of list held by a cache."""

    BLACKLIST = 0
    WHITELIST = 1

    def __str__(self) -> str:
        return self.name.lower()


class _DownloadError(Exception):
    """A list could not be downloaded for a permanent reason."""


def _logger():
    return log.prefixed_log("list_cache")


def process_line(line: str) -> str:
    """Return the entry of a list line (last column, hosts format) or ``""``."""
    if line.startswith("#"):
        return ""
    parts = line.split()
    if not parts:
        return ""
    host = parts[-1]
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return host.strip().lower()
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def _download(link: str, timeout: float, retry_delay: float) -> str:
    _logger().info("starting download", extra={"fields": {"link": link}})
    last_error: requests.Timeout | None = None
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            response = requests.get(link, timeout=timeout)
        except requests.Timeout as exc:
            last_error = exc
            _logger().warning(
                f"Temporary network error / Timeout occurred, retrying... {exc}",
                extra={"fields": {"link": link, "attempt": attempt}},
            )
            if attempt < _MAX_ATTEMPTS:
                time.sleep(retry_delay)
            continue
        with response:
            if response.status_code == 200:
                return response.content.decode("utf-8", errors="replace")
            raise _DownloadError(
                f"couldn't download url '{link}', got status code {response.status_code}"
            )
    assert last_error is not None
    raise last_error


def _read_file(path: str) -> str:
    _logger().info("starting processing of file", extra={"fields": {"file": path}})
    path = path.removeprefix("file://")
    with open(path, encoding="utf-8", errors="replace") as handle:
        return handle.read()


def _read_entries(link: str, timeout: float, retry_delay: float) -> list[str] | None:
    """Entries of one source; ``None`` on a temporary error, ``[]`` on any other."""
    try:
        if "\n" in link:
            text = link
        elif link.startswith("http"):
            text = _download(link, timeout, retry_delay)
        else:
            text = _read_file(link)
    except requests.Timeout as exc:
        _logger().warning(f"error during file processing: {exc}")
        return None
    except (_DownloadError, OSError) as exc:
        _logger().warning(f"error during file processing: {exc}")
        return []

    entries = [entry for entry in (process_line(line.strip()) for line in text.split("\n")) if entry]
    _logger().info(
        "file imported", extra={"fields": {"source": link, "count": len(entries)}}
    )
    return entries


def _create_group_cache(
    links: list[str], timeout: float, retry_delay: float
) -> frozenset[str] | None:
    if not links:
        return frozenset()
    with ThreadPoolExecutor(max_workers=len(links)) as pool:
        results = list(pool.map(lambda link: _read_entries(link, timeout, retry_delay), links))
    if any(result is None for result in results):
        return None
    return frozenset(chain.from_iterable(results))


class ListCache:
    """Domain lists divided in groups, refreshed periodically in the background."""

    def __init__(
        self,
        list_type: ListCacheType,
        group_to_links: dict[str, list[str]],
        refresh_period: int = 0,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_delay: float = 1.0,
    ) -> None:
        """``refresh_period`` is in minutes: 0 means 4 hours, negative disables it."""
        self.list_type = list_type
        self.group_to_links = group_to_links
        self.refresh_period = (
            timedelta(minutes=refresh_period) if refresh_period != 0 else DEFAULT_REFRESH_PERIOD
        )
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._group_caches: dict[str, frozenset[str]] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()

        self.refresh()

        self._thread: threading.Thread | None = None
        if self.refresh_period > timedelta(0):
            self._thread = threading.Thread(
                target=self._periodic_update, name="list-cache-refresh", daemon=True
            )
            self._thread.start()

    def _periodic_update(self) -> None:
        while not self._stopped.wait(self.refresh_period.total_seconds()):
            self.refresh()

    def stop(self) -> None:
        """Stop the periodic refresh."""
        self._stopped.set()

    def __enter__(self) -> ListCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _count(self, group: str) -> int:
        with self._lock:
            return len(self._group_caches.get(group, ()))

    def match(self, domain: str, groups_to_check: Iterable[str]) -> str | None:
        """Return the first of ``groups_to_check`` whose list holds ``domain``."""
        if not domain:
            return None
        wanted = domain.lower()
        with self._lock:
            for group in groups_to_check:
                if wanted in self._group_caches.get(group, ()):
                    return group
        return None

    def refresh(self) -> None:
        """Reload every group; a group whose reload hit a temporary error is kept."""
        for group, links in self.group_to_links.items():
            cache = _create_group_cache(links, self.timeout, self.retry_delay)
            if cache is not None:
                with self._lock:
                    self._group_caches[group] = cache
            else:
                _logger().warning(
                    "Populating of group cache failed, "
                    "leaving items from last successful download in cache"
                )

            count = self._count(group)
            evt.bus().publish(evt.BLOCKING_CACHE_GROUP_CHANGED, self.list_type, group, count)
            _logger().info(
                "group import finished",
                extra={"fields": {"group": group, "total_count": count}},
            )

    def configuration(self) -> list[str]:
        """Describe the configuration and the size of every group."""
        if self.refresh_period > timedelta(0):
            lines = [f"refresh period: {self.refresh_period // timedelta(minutes=1)} minutes"]
        else:
            lines = ["refresh: disabled"]

        lines.append("group links:")
        for group, links in self.group_to_links.items():
            lines.append(f"  {group}:")
            lines.extend(f"   - {link}" for link in links)

        lines.append("group caches:")
        with self._lock:
            counts = {group: len(cache) for group, cache in self._group_caches.items()}
        lines.extend(f"  {group}: {count} entries" for group, count in counts.items())
        lines.append(f"  TOTAL: {sum(counts.values())} entries")
        return lines