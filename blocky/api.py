"""REST API data structures, endpoints and a minimal request router."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from http import HTTPStatus
from typing import Any, Callable, Protocol, runtime_checkable
from urllib.parse import parse_qs, urlsplit

from blocky import log

PATH_BLOCKING_STATUS = "/api/blocking/status"
PATH_BLOCKING_ENABLE = "/api/blocking/enable"
PATH_BLOCKING_DISABLE = "/api/blocking/disable"
PATH_LISTS_REFRESH = "/api/lists/refresh"
PATH_QUERY = "/api/query"

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_MAX_NANOS = 2**63 - 1


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``300s``, ``5m30s``, ``1.5h`` or ``500ms``.

    Raises ``ValueError`` for malformed input, missing or unknown units.
    """
    text = value
    negative = False
    if text.startswith(("+", "-")):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f'time: invalid duration "{value}"')

    total = Decimal(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_COMPONENT.match(text, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{value}"')
        total += Decimal(match.group(1)) * _UNIT_NANOS[match.group(2)]
        pos = match.end()

    nanos = int(total)
    if nanos > _MAX_NANOS:
        raise ValueError(f'time: invalid duration "{value}"')
    result = timedelta(microseconds=nanos / 1000)
    return -result if negative else result


@dataclass(frozen=True)
class QueryRequest:
    """A DNS query sent over the API."""

    query: str
    type: str


@dataclass(frozen=True)
class QueryResult:
    """The result of a DNS query sent over the API."""

    reason: str = ""
    response_type: str = ""
    response: str = ""
    return_code: str = ""


@dataclass
class BlockingStatus:
    """Current blocking status."""

    enabled: bool
    disabled_groups: list[str] = field(default_factory=list)
    auto_enable_in_sec: int = 0

    def to_json(self) -> str:
        """Serialize with the API's field names."""
        return json.dumps(
            {
                "enabled": self.enabled,
                "disabledGroups": list(self.disabled_groups),
                "autoEnableInSec": self.auto_enable_in_sec,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> BlockingStatus:
        """Parse the API representation; raises ``ValueError`` when malformed."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("blocking status must be a JSON object")
        return cls(
            enabled=bool(data.get("enabled", False)),
            disabled_groups=list(data.get("disabledGroups") or []),
            auto_enable_in_sec=int(data.get("autoEnableInSec") or 0),
        )


@runtime_checkable
class BlockingControl(Protocol):
    """Controls the blocking status."""

    def enable_blocking(self) -> None:
        """Enable blocking for all groups."""

    def disable_blocking(self, duration: timedelta, disable_groups: list[str]) -> None:
        """Disable blocking; raise on unknown groups."""

    def blocking_status(self) -> BlockingStatus:
        """Return the current blocking status."""


@runtime_checkable
class ListRefresher(Protocol):
    """Triggers refreshing of all lists."""

    def refresh_lists(self) -> None:
        """Reload every list."""


@dataclass
class Response:
    """Result of an API handler."""

    status: int = HTTPStatus.OK
    body: bytes = b""
    content_type: str | None = None


Handler = Callable[[str], Response]


class Router:
    """Maps method and path to handlers that take the request URL."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Handler] = {}

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        """Register ``handler`` for ``method`` requests to ``path``."""
        self._routes[(method.upper(), path)] = handler

    def dispatch(self, method: str, url: str) -> Response:
        """Call the handler registered for the request; 404 or 405 if none."""
        path = urlsplit(url).path
        handler = self._routes.get((method.upper(), path))
        if handler is not None:
            return handler(url)
        if any(route_path == path for _, route_path in self._routes):
            return Response(status=HTTPStatus.METHOD_NOT_ALLOWED)
        return Response(status=HTTPStatus.NOT_FOUND)


def _query_param(url: str, name: str) -> str:
    values = parse_qs(urlsplit(url).query, keep_blank_values=True).get(name)
    return values[0] if values else ""


class BlockingEndpoint:
    """HTTP endpoints for the blocking status."""

    def __init__(self, control: BlockingControl) -> None:
        self.control = control

    def api_blocking_enable(self, url: str) -> Response:
        """Enable blocking."""
        log.get_logger().info("enabling blocking...")
        self.control.enable_blocking()
        return Response()

    def api_blocking_disable(self, url: str) -> Response:
        """Disable blocking, optionally for a duration and for some groups only."""
        duration = timedelta(0)
        duration_param = _query_param(url, "duration")
        if duration_param:
            try:
                duration = parse_duration(duration_param)
            except ValueError:
                log.get_logger().error(f"wrong duration format '{duration_param}'")
                return Response(status=HTTPStatus.BAD_REQUEST)

        groups_param = _query_param(url, "groups")
        groups = groups_param.split(",") if groups_param else []

        try:
            self.control.disable_blocking(duration, groups)
        except Exception as exc:  # noqa: BLE001 - any refusal is a bad request
            log.get_logger().error(f"can't disable the blocking: {exc}")
            return Response(status=HTTPStatus.BAD_REQUEST)
        return Response()

    def api_blocking_status(self, url: str) -> Response:
        """Return the blocking status as JSON."""
        status = self.control.blocking_status()
        return Response(body=status.to_json().encode("utf-8"), content_type="application/json")


class ListRefreshEndpoint:
    """HTTP endpoint for refreshing lists."""

    def __init__(self, refresher: ListRefresher) -> None:
        self.refresher = refresher

    def api_list_refresh(self, url: str) -> Response:
        """Refresh all lists."""
        self.refresher.refresh_lists()
        return Response()


def register_endpoint(router: Router, target: Any) -> None:
    """Register the endpoints for every API interface ``target`` implements."""
    if isinstance(target, BlockingControl):
        endpoint = BlockingEndpoint(target)
        router.add_route("GET", PATH_BLOCKING_ENABLE, endpoint.api_blocking_enable)
        router.add_route("GET", PATH_BLOCKING_DISABLE, endpoint.api_blocking_disable)
        router.add_route("GET", PATH_BLOCKING_STATUS, endpoint.api_blocking_status)

    if isinstance(target, ListRefresher):
        refresh = ListRefreshEndpoint(target)
        router.add_route("POST", PATH_LISTS_REFRESH, refresh.api_list_refresh)