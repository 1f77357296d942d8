# packetfilters

A small library of composable filters for UDP packets passing through a proxy.
Every filter looks at a packet on its way in from a client (`read`) and on its
way back out to that client (`write`). For each packet the filter returns a
response to pass it on, or `None` to drop it.

## Filters

| Module | Filter | What it does |
| --- | --- | --- |
| `packetfilters.debug` | `Debug` | Logs every packet it sees through the `logging` module. |
| `packetfilters.concatenate_bytes` | `ConcatenateBytes` | Appends or prepends a fixed byte string to each packet. |
| `packetfilters.firewall` | `Firewall` | Allows or denies packets by source CIDR range and port range; packets matching no rule are denied. |
| `packetfilters.load_balancer` | `LoadBalancer` | Keeps one upstream endpoint per packet: round robin, random, or a hash of the source address. |
| `packetfilters.local_rate_limit` | `LocalRateLimit` | Limits how many packets each source address may send per period. |
| `packetfilters.token_router` | `TokenRouter` | Keeps only the endpoints whose tokens include the token found in the packet's metadata. |

Each module has a `NAME` constant and a `factory()` function that returns its
filter factory. `FilterSet.default()` in `packetfilters.filter_set` gathers
all of them, and `FilterRegistry` in `packetfilters.registry` builds filters
by name.

The building blocks live in two modules:

- `packetfilters.context`: `EndpointAddress`, `Endpoint`, `UpstreamEndpoints`,
  `ReadContext`/`ReadResponse` and `WriteContext`/`WriteResponse`.
- `packetfilters.factory`: the `Filter` base class, `FilterFactory`,
  `CreateFilterArgs`, `FilterInstance`, and a simple `MetricsRegistry` of
  `Counter`s that the firewall, rate limiter and token router count into.

## Installation

```
pip install .
```

## Usage

```python
from packetfilters import concatenate_bytes
from packetfilters.context import Endpoint, EndpointAddress, ReadContext, UpstreamEndpoints
from packetfilters.factory import CreateFilterArgs, MetricsRegistry
from packetfilters.filter_set import FilterSet
from packetfilters.registry import FilterRegistry

registry = FilterRegistry(FilterSet.default())

instance = registry.get(
    concatenate_bytes.NAME,
    CreateFilterArgs.fixed(MetricsRegistry(), {"on_read": "APPEND", "bytes": "aGVsbG8="}),
)

endpoints = UpstreamEndpoints([Endpoint(EndpointAddress.parse("127.0.0.1:8080"))])
ctx = ReadContext(endpoints, EndpointAddress.parse("127.0.0.1:9000"), b"abc")
response = instance.filter.read(ctx)
print(response.contents)  # b'abchello'
```

Asking the registry for an unknown name raises `NotFoundError`. A filter that
needs configuration but gets none raises `MissingConfigError`; a configuration
that cannot be read raises `DeserializeFailedError`. All the errors live in
`packetfilters.errors` and share the base class `FilterError`.

## Configuration

A filter's configuration is a plain mapping, as loaded from YAML or JSON. For
the firewall, for example:

```yaml
on_read:
  - action: ALLOW
    source: 192.168.51.0/24
    ports:
      - 10
      - 1000-7000
on_write:
  - action: DENY
    source: 192.168.75.0/24
    ports:
      - 7000
```

Each `Config` class can also be built from its protobuf-shaped form (the
`ProtoConfig` dataclass in the same module) with `Config.from_proto`, which is
what `CreateFilterArgs.dynamic` uses, and turned back into JSON-ready data with
`to_json`.

The token router reads its token from the metadata key given as `metadataKey`,
by default `packetfilters.context.CAPTURED_BYTES`.

## What this package does not do

It is a library of filters only. It opens no sockets, runs no proxy, has no
command-line program and does not chain filters together or reload them at
run time; a program using it passes each packet to the filters itself.
Metrics are kept in memory in `MetricsRegistry` and are not exported anywhere.

## Running the tests

```
pip install .[test]
pytest
```