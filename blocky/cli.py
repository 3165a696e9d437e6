"""Command line client for the REST API."""

from __future__ import annotations

import argparse
import json
import re
from dataclasses import dataclass
from datetime import timedelta
from importlib import metadata
from typing import Any, Iterable

import dns.exception
import dns.rdatatype
import requests

from blocky import api, config, log

BUILD_TIME = "undefined"


def _version() -> str:
    try:
        return metadata.version("blocky")
    except metadata.PackageNotFoundError:
        return "undefined"


VERSION = _version()


class CommandError(Exception):
    """A command failed; the message says why."""


def format_duration(seconds: float | timedelta) -> str:
    """Render a duration the way the API expects it, e.g. ``5m0s`` or ``500ms``."""
    if isinstance(seconds, timedelta):
        nanos = (seconds.days * 86400 + seconds.seconds) * 1_000_000_000 + seconds.microseconds * 1000
    else:
        nanos = round(seconds * 1_000_000_000)
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos == 0:
        return "0s"

    def with_fraction(value: int, divisor: int) -> str:
        whole, frac = divmod(value, divisor)
        if not frac:
            return str(whole)
        digits = len(str(divisor)) - 1
        return f"{whole}.{str(frac).zfill(digits).rstrip('0')}"

    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{with_fraction(nanos, 1_000)}µs"
    if nanos < 1_000_000_000:
        return f"{sign}{with_fraction(nanos, 1_000_000)}ms"

    total_seconds, frac = divmod(nanos, 1_000_000_000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, secs = divmod(rest, 60)
    sec_text = with_fraction(secs * 1_000_000_000 + frac, 1_000_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{sec_text}s"
    if minutes:
        return f"{sign}{minutes}m{sec_text}s"
    return f"{sign}{sec_text}s"


def _valid_query_type(query_type: str) -> bool:
    if query_type.startswith("TYPE"):
        return False
    try:
        rdtype = dns.rdatatype.from_text(query_type)
    except (dns.exception.DNSException, ValueError):
        return False
    return rdtype != dns.rdatatype.NONE and dns.rdatatype.to_text(rdtype) == query_type


def _nok(response: requests.Response, with_body: bool = False) -> CommandError:
    message = f"NOK: {response.status_code} {response.reason}"
    if with_body:
        message = f"{message} {response.text}"
    return CommandError(message)


@dataclass
class ApiClient:
    """Client of the REST API of a running server."""

    host: str = "localhost"
    port: int = 4000
    timeout: float | None = None

    def url(self, path: str) -> str:
        """Full URL of an API path."""
        return f"http://{self.host}:{self.port}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return requests.request(method, self.url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise CommandError(f"can't execute: {exc}") from exc

    def enable_blocking(self) -> None:
        """Enable blocking."""
        with self._request("GET", api.PATH_BLOCKING_ENABLE) as response:
            if response.status_code != 200:
                raise _nok(response)

    def disable_blocking(
        self, duration: float | timedelta | None = None, groups: Iterable[str] = ()
    ) -> None:
        """Disable blocking for ``duration`` (0 means until enabled) and ``groups``."""
        params = {
            "duration": format_duration(duration or 0),
            "groups": ",".join(groups),
        }
        with self._request("GET", api.PATH_BLOCKING_DISABLE, params=params) as response:
            if response.status_code != 200:
                raise _nok(response)

    def blocking_status(self) -> api.BlockingStatus:
        """Fetch the current blocking status."""
        with self._request("GET", api.PATH_BLOCKING_STATUS) as response:
            if response.status_code != 200:
                raise _nok(response)
            try:
                return api.BlockingStatus.from_json(response.content)
            except (ValueError, TypeError) as exc:
                raise CommandError(f"can't read response: {exc}") from exc

    def refresh_lists(self) -> None:
        """Trigger the refresh of all lists."""
        with self._request(
            "POST", api.PATH_LISTS_REFRESH, headers={"Content-Type": "application/json"}
        ) as response:
            if response.status_code != 200:
                raise _nok(response, with_body=True)

    def query(self, domain: str, query_type: str = "A") -> api.QueryResult:
        """Run a DNS query through the server."""
        if not _valid_query_type(query_type):
            raise CommandError(f"unknown query type '{query_type}'")
        payload = {"Query": domain, "Type": query_type}
        with self._request("POST", api.PATH_QUERY, json=payload) as response:
            if response.status_code != 200:
                raise _nok(response, with_body=True)
            try:
                data = json.loads(response.content)
                if not isinstance(data, dict):
                    raise ValueError("query result must be a JSON object")
            except ValueError as exc:
                raise CommandError(f"can't read response: {exc}") from exc
        return api.QueryResult(
            reason=str(data.get("reason", "")),
            response_type=str(data.get("responseType", "")),
            response=str(data.get("response", "")),
            return_code=str(data.get("returnCode", "")),
        )


def version_lines() -> list[str]:
    """The lines printed by the version command."""
    return ["blocky", f"Version: {VERSION}", f"Build time: {BUILD_TIME}"]


def _describe_status(status: api.BlockingStatus) -> str:
    if status.enabled:
        return "blocking enabled"
    groups = "; ".join(status.disabled_groups)
    if status.auto_enable_in_sec == 0:
        return f"blocking disabled for groups: {groups}"
    return f"blocking disabled for groups: {groups}, for {status.auto_enable_in_sec} seconds"


def _cmd_enable(client: ApiClient, _args: argparse.Namespace) -> None:
    client.enable_blocking()
    log.get_logger().info("OK")


def _cmd_disable(client: ApiClient, args: argparse.Namespace) -> None:
    client.disable_blocking(args.duration, args.groups)
    log.get_logger().info("OK")


def _cmd_status(client: ApiClient, _args: argparse.Namespace) -> None:
    log.get_logger().info(_describe_status(client.blocking_status()))


def _cmd_refresh(client: ApiClient, _args: argparse.Namespace) -> None:
    client.refresh_lists()
    log.get_logger().info("OK")


def _cmd_query(client: ApiClient, args: argparse.Namespace) -> None:
    result = client.query(args.domain, args.type)
    logger = log.get_logger()
    logger.info(f"Query result for '{args.domain}' ({args.type}):")
    logger.info(f"\treason:        {result.reason:>20}")
    logger.info(f"\tresponse type: {result.response_type:>20}")
    logger.info(f"\tresponse:      {result.response:>20}")
    logger.info(f"\treturn code:   {result.return_code:>20}")


def _cmd_version(_client: ApiClient, _args: argparse.Namespace) -> None:
    for line in version_lines():
        print(line)


def _uint16(text: str) -> int:
    if not re.fullmatch(r"[0-9]+", text) or int(text) > 0xFFFF:
        raise argparse.ArgumentTypeError(f"invalid port '{text}'")
    return int(text)


def _duration(text: str) -> timedelta:
    try:
        return api.parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blocky",
        description="A fast and configurable DNS Proxy and ad-blocker for local network.",
    )
    parser.add_argument("-c", "--config", default="./config.yml", help="path to config file")
    parser.add_argument("--apiHost", dest="api_host", default="localhost", help="host of blocky (API)")
    parser.add_argument("--apiPort", dest="api_port", type=_uint16, default=4000, help="port of blocky (API)")
    parser.set_defaults(handler=None, help_parser=parser)
    commands = parser.add_subparsers(dest="command", metavar="command")

    commands.add_parser("help", help="Help about any command")

    commands.add_parser("refresh", help="refreshes all lists").set_defaults(handler=_cmd_refresh)

    query = commands.add_parser("query", help="performs DNS query")
    query.add_argument("domain")
    query.add_argument("-t", "--type", default="A", help="query type (A, AAAA, ...)")
    query.set_defaults(handler=_cmd_query)

    commands.add_parser("version", help="Print the version number of blocky").set_defaults(
        handler=_cmd_version
    )

    blocking = commands.add_parser(
        "blocking", aliases=["block"], help="Control status of blocking resolver"
    )
    blocking.set_defaults(help_parser=blocking)
    actions = blocking.add_subparsers(dest="action", metavar="action")
    actions.add_parser("enable", aliases=["on"], help="Enable blocking").set_defaults(
        handler=_cmd_enable
    )
    disable = actions.add_parser(
        "disable", aliases=["off"], help="Disable blocking for certain duration"
    )
    disable.add_argument("-d", "--duration", type=_duration, default=timedelta(0), help="duration in min")
    disable.add_argument(
        "-g", "--groups", action="append", default=[], help="blocking groups to disable"
    )
    disable.set_defaults(handler=_cmd_disable)
    actions.add_parser("status", help="Print the status of blocking resolver").set_defaults(
        handler=_cmd_status
    )

    lists = commands.add_parser("lists", help="lists operations")
    lists.set_defaults(help_parser=lists)
    list_actions = lists.add_subparsers(dest="action", metavar="action")
    list_actions.add_parser("refresh", help="refreshes all lists").set_defaults(
        handler=_cmd_refresh
    )
    return parser


def _init(args: argparse.Namespace) -> ApiClient:
    cfg = config.load_config(args.config, False)
    try:
        log.configure_logger(cfg.log_level, cfg.log_format, cfg.log_timestamp)
    except ValueError as exc:
        raise CommandError(str(exc)) from exc

    port = args.api_port
    if cfg.http_port:
        text = cfg.http_port.split(":")[-1].strip()
        if not re.fullmatch(r"[0-9]+", text) or int(text) > 0xFFFF:
            raise CommandError(f"can't convert port to number (1 - 65535) '{text}'")
        port = int(text)
    return ApiClient(args.api_host, port)


def main(argv: list[str] | None = None) -> int:
    """Run the command line; returns the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.handler is None:
        args.help_parser.print_help()
        return 0
    try:
        client = _init(args)
        args.handler(client, args)
    except (CommandError, config.ConfigError) as exc:
        log.get_logger().error(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())