# blocky

Building blocks for a DNS proxy and ad-blocker on a local network, and a
command-line client for the REST API of a running instance.

## Modules

- `blocky.config`: the configuration model (`Config` and its sections) and
  strict YAML loading with `load_config(path, mandatory)` and `get_config()`.
  Unknown keys, wrong value types, bad upstreams, bad IP addresses and a
  `logFormat` other than `text` or `json` raise `ConfigError`. A missing
  file gives the defaults unless `mandatory` is true.
  `parse_upstream` reads `[net:]host[:port][/path]` into an `Upstream`.
  `net` is `tcp+udp` (default port 53), `tcp-tls` (853) or `https` (443).
  The prefixes `tcp` and `udp` are accepted and mapped to `tcp+udp` with a
  deprecation warning.
- `blocky.lists`: `ListCache` holds blacklists or whitelists
  (`ListCacheType`), grouped by name. A list source can be an `http(s)` URL,
  a local path, a `file://` path, or inline text containing line breaks.
  Lines are read in hosts-file format, and comments starting with `#` are
  skipped. Timeouts are retried up to three times. If a refresh hits a
  timeout, the group keeps its previous entries. Any other error empties
  the group. Groups are refreshed in the background, every 4 hours by
  default. A negative period disables this, and `stop()` ends it.
  `match(domain, groups)` returns the first matching group name or `None`.
  `configuration()` describes the links and entry counts.
- `blocky.api`: the request and result types (`QueryRequest`, `QueryResult`,
  `BlockingStatus`) and `parse_duration` for values like `5m30s`.
  It also has the endpoints for blocking control and list refresh
  (`BlockingEndpoint`, `ListRefreshEndpoint`) and a small `Router`.
  `register_endpoint` wires up any object that implements `BlockingControl`
  or `ListRefresher`.
- `blocky.evt`: a synchronous, thread-safe `EventBus`, the event topic
  names, and the global bus `bus()`.
- `blocky.metrics`: the types `Gauge`, `Counter`, `GaugeVec` and `Registry`,
  which render the Prometheus text format. `register_event_listeners`
  creates the blocking, caching and build-info metrics and feeds them from
  bus events. `start(router, cfg)` exposes the registry on `cfg.path` when
  metrics are enabled.
- `blocky.log`: the shared logger (`get_logger`, `prefixed_log`,
  `configure_logger`), with text or JSON output.

## Installation

```
pip install .
```

## Command line

The `blocky` command talks to the API of a running server. The default
address is `localhost:4000`.

```
blocky --apiHost localhost --apiPort 4000 blocking status
blocky blocking enable
blocky blocking disable --duration 5m --groups ads
blocky lists refresh
blocky query example.com --type AAAA
blocky version
```

`block` is an alias of `blocking`. `on` and `off` are aliases of `enable`
and `disable`. `refresh` is also available as a top-level command.
`--groups` can be repeated. Without `--duration`, blocking stays disabled
until it is enabled again.

The command reads the configuration file given by `--config`, which
defaults to `./config.yml` and may be absent. It applies the file's log
settings. If the file sets `httpPort`, that port is used instead of
`--apiPort`. A failed request, an error status or a configuration error is
logged, and the command exits with status 1.

## Library use

```python
from blocky.config import parse_upstream
from blocky.lists import ListCache, ListCacheType

upstream = parse_upstream("https://dns.google/dns-query")
# Upstream(net='https', host='dns.google', port=443, path='/dns-query')

with ListCache(ListCacheType.BLACKLIST, {"ads": ["ads.example.com\ntracker.example.com"]}, 0) as cache:
    group = cache.match("ads.example.com", ["ads"])  # "ads"
```

## What it does not do

The package contains no DNS server. It does not resolve, forward or cache
DNS queries. It has no `serve` command. The `Router` only dispatches calls
in-process and does not listen on a network port. The endpoints, list
caches and metrics are components for a server to use, and the command-line
client needs a server that is already running.

## Tests

```
pip install .[test]
pytest
```