"""Configuration model and strict YAML loading."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Union

import yaml

from blocky import log

NET_UDP = "udp"
NET_TCP = "tcp"
NET_TCP_UDP = "tcp+udp"
NET_TCP_TLS = "tcp-tls"
NET_HTTPS = "https"

_NET_DEFAULT_PORT = {NET_TCP_UDP: 53, NET_TCP_TLS: 853, NET_HTTPS: 443}

_VALID_UPSTREAM = re.compile(
    r"(?P<Host>(?:\[[^\]]+\])|[^\s/:]+):?(?P<Port>[^\s/:]*)?(?P<Path>/[^\s]*)?",
    re.ASCII,
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ConfigError(Exception):
    """Invalid or unreadable configuration."""


@dataclass(frozen=True)
class Upstream:
    """An external DNS server."""

    net: str = ""
    host: str = ""
    port: int = 0
    path: str = ""


def _extract_net(upstream: str) -> tuple[str, str]:
    for deprecated in (NET_TCP, NET_UDP):
        if upstream.startswith(deprecated + ":"):
            log.get_logger().warning(
                f"net prefix {deprecated} is deprecated, using tcp+udp as default fallback"
            )
            return NET_TCP_UDP, upstream[len(deprecated) + 1 :]
    for net in (NET_TCP_UDP, NET_TCP_TLS, NET_HTTPS):
        if upstream.startswith(net + ":"):
            return net, upstream[len(net) + 1 :]
    return NET_TCP_UDP, upstream


def parse_upstream(upstream: str) -> Upstream:
    """Parse ``[net:]host[:port][/path]``; a blank string gives an empty Upstream."""
    if not upstream.strip():
        return Upstream()

    net, rest = _extract_net(upstream)
    match = _VALID_UPSTREAM.search(rest)
    if match is None:
        raise ConfigError(f"can't parse upstream '{upstream}'")

    port_part = (match.group("Port") or "").strip()
    if port_part:
        if not port_part.isdigit() or int(port_part) > 0xFFFF:
            raise ConfigError(f"can't convert port to number (1 - 65535) '{port_part}'")
        port = int(port_part)
    else:
        port = _NET_DEFAULT_PORT[net]
    host = match.group("Host").replace("[", "").replace("]", "")
    return Upstream(net=net, host=host, port=port, path=match.group("Path") or "")


def _parse_ip(text: str) -> IPAddress:
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        raise ConfigError(f"invalid IP address '{text}'") from None


@dataclass
class PrometheusConfig:
    enable: bool = False
    path: str = "/metrics"


@dataclass
class CustomDNSConfig:
    mapping: dict[str, list[IPAddress]] = field(default_factory=dict)


@dataclass
class ConditionalUpstreamConfig:
    rewrite: dict[str, str] = field(default_factory=dict)
    mapping: dict[str, list[Upstream]] = field(default_factory=dict)


@dataclass
class BlockingConfig:
    black_lists: dict[str, list[str]] = field(default_factory=dict)
    white_lists: dict[str, list[str]] = field(default_factory=dict)
    client_groups_block: dict[str, list[str]] = field(default_factory=dict)
    block_type: str = ""
    block_time_sec: int = 0
    refresh_period: int = 0


@dataclass
class ClientLookupConfig:
    clients: dict[str, list[IPAddress]] = field(default_factory=dict)
    upstream: Upstream = field(default_factory=Upstream)
    single_name_order: list[int] = field(default_factory=list)


@dataclass
class CachingConfig:
    min_caching_time: int = 0
    max_caching_time: int = 0
    max_items_count: int = 0
    prefetching: bool = False
    prefetch_expires: int = 0
    prefetch_threshold: int = 0
    prefetch_max_items_count: int = 0


@dataclass
class QueryLogConfig:
    dir: str = ""
    per_client: bool = False
    log_retention_days: int = 0


_Converter = Callable[[Any], Any]


def _wrong(expected: str, value: Any) -> ConfigError:
    return ConfigError(f"wrong file structure: cannot unmarshal {value!r} into {expected}")


def _str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise _wrong("string", value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _wrong("int", value)
    return value


def _uint(value: Any) -> int:
    number = _int(value)
    if number < 0:
        raise _wrong("uint", value)
    return number


def _bool(value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise _wrong("bool", value)
    return value


def _mapping(value: Any) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _wrong("map", value)
    return value


def _list(value: Any) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _wrong("list", value)
    return value


def _map_of(convert: _Converter) -> _Converter:
    return lambda value: {_str(k): convert(v) for k, v in _mapping(value).items()}


def _list_of(convert: _Converter) -> _Converter:
    return lambda value: [convert(item) for item in _list(value)]


def _comma_list_of(convert: Callable[[str], Any]) -> _Converter:
    return lambda value: [convert(part.strip()) for part in _str(value).split(",")]


def _upstream(value: Any) -> Upstream:
    return parse_upstream(_str(value))


def _build(cls: type, value: Any, fields: dict[str, tuple[str, _Converter]]) -> Any:
    mapping = _mapping(value)
    for key in mapping:
        if key not in fields:
            raise ConfigError(f"wrong file structure: field {key} not found in {cls.__name__}")
    return cls(**{attr: convert(mapping[key]) for key, (attr, convert) in fields.items() if key in mapping})


def _section(cls: type, fields: dict[str, tuple[str, _Converter]]) -> _Converter:
    return lambda value: _build(cls, value, fields)


_FIELDS: dict[str, tuple[str, _Converter]] = {
    "upstream": ("upstream", _map_of(_list_of(_upstream))),
    "customDNS": ("custom_dns", _section(CustomDNSConfig, {
        "mapping": ("mapping", _map_of(_comma_list_of(_parse_ip))),
    })),
    "conditional": ("conditional", _section(ConditionalUpstreamConfig, {
        "rewrite": ("rewrite", _map_of(_str)),
        "mapping": ("mapping", _map_of(_comma_list_of(parse_upstream))),
    })),
    "blocking": ("blocking", _section(BlockingConfig, {
        "blackLists": ("black_lists", _map_of(_list_of(_str))),
        "whiteLists": ("white_lists", _map_of(_list_of(_str))),
        "clientGroupsBlock": ("client_groups_block", _map_of(_list_of(_str))),
        "blockType": ("block_type", _str),
        "blockTTL": ("block_time_sec", _int),
        "refreshPeriod": ("refresh_period", _int),
    })),
    "clientLookup": ("client_lookup", _section(ClientLookupConfig, {
        "clients": ("clients", _map_of(_list_of(lambda v: _parse_ip(_str(v))))),
        "upstream": ("upstream", _upstream),
        "singleNameOrder": ("single_name_order", _list_of(_uint)),
    })),
    "caching": ("caching", _section(CachingConfig, {
        "minTime": ("min_caching_time", _int),
        "maxTime": ("max_caching_time", _int),
        "maxItemsCount": ("max_items_count", _int),
        "prefetching": ("prefetching", _bool),
        "prefetchExpires": ("prefetch_expires", _int),
        "prefetchThreshold": ("prefetch_threshold", _int),
        "prefetchMaxItemsCount": ("prefetch_max_items_count", _int),
    })),
    "queryLog": ("query_log", _section(QueryLogConfig, {
        "dir": ("dir", _str),
        "perClient": ("per_client", _bool),
        "logRetentionDays": ("log_retention_days", _uint),
    })),
    "prometheus": ("prometheus", _section(PrometheusConfig, {
        "enable": ("enable", _bool),
        "path": ("path", _str),
    })),
    "logLevel": ("log_level", _str),
    "logFormat": ("log_format", _str),
    "logPrivacy": ("log_privacy", _bool),
    "logTimestamp": ("log_timestamp", _bool),
    "port": ("port", _str),
    "httpPort": ("http_port", _str),
    "httpsPort": ("https_port", _str),
    "disableIPv6": ("disable_ipv6", _bool),
    "httpsCertFile": ("cert_file", _str),
    "httpsKeyFile": ("key_file", _str),
    "bootstrapDns": ("bootstrap_dns", _upstream),
}


@dataclass
class Config:
    """Main configuration, with defaults for everything not configured."""

    upstream: dict[str, list[Upstream]] = field(default_factory=dict)
    custom_dns: CustomDNSConfig = field(default_factory=CustomDNSConfig)
    conditional: ConditionalUpstreamConfig = field(default_factory=ConditionalUpstreamConfig)
    blocking: BlockingConfig = field(default_factory=BlockingConfig)
    client_lookup: ClientLookupConfig = field(default_factory=ClientLookupConfig)
    caching: CachingConfig = field(default_factory=CachingConfig)
    query_log: QueryLogConfig = field(default_factory=QueryLogConfig)
    prometheus: PrometheusConfig = field(default_factory=PrometheusConfig)
    log_level: str = "info"
    log_format: str = log.CFG_LOG_FORMAT_TEXT
    log_privacy: bool = False
    log_timestamp: bool = True
    port: str = "53"
    http_port: str = ""
    https_port: str = ""
    disable_ipv6: bool = False
    cert_file: str = ""
    key_file: str = ""
    bootstrap_dns: Upstream = field(default_factory=Upstream)

    @classmethod
    def from_dict(cls, data: Any) -> Config:
        """Build a config from parsed YAML; unknown keys and wrong types raise ConfigError."""
        return _build(cls, data, _FIELDS)


_config = Config()


def load_config(path: str | Path, mandatory: bool) -> Config:
    """Load the YAML file at ``path`` and make it the current config.

    A missing file yields the defaults unless ``mandatory`` is set.
    """
    global _config

    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        if not mandatory:
            _config = Config()
            return _config
        raise ConfigError(f"Can't read config file: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Can't read config file: {exc}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"wrong file structure: {exc}") from exc

    cfg = Config.from_dict(data)
    if cfg.log_format not in (log.CFG_LOG_FORMAT_TEXT, log.CFG_LOG_FORMAT_JSON):
        raise ConfigError("LogFormat should be 'text' or 'json'")

    _config = cfg
    return cfg


def get_config() -> Config:
    """Return the current config."""
    return _config