# tuic

A pure-Python model of the TUIC (version 5) relay protocol. It covers the
command headers and their wire encoding, UDP packet fragmentation and
reassembly, task bookkeeping for one connection, and the JSON
configuration format of a TUIC server. It uses only the standard library.

## What is inside

- `tuic.protocol`: the `VERSION` constant. It defines the address variants
  `NoneAddress`, `DomainAddress` and `SocketAddress`, all subclasses of
  `Address`, and the commands `Authenticate`, `Connect`, `Packet`,
  `Dissociate` and `Heartbeat`. A command is wrapped in a `Header`. These
  are frozen dataclasses that check their field ranges. `encoded_len()`
  gives the size of each on the wire, and `type_code()` gives the type
  byte.
- `tuic.codec`: encoding and decoding of headers.
  - `encode_header` and `decode_header` work on bytes.
  - `write_header` and `read_header` work on binary file-like streams.
  - `write_header_async` and `read_header_async` work on asyncio stream
    writers and readers.

  Malformed input raises a subclass of `UnmarshalError`: `TruncatedInput`,
  `InvalidVersion`, `InvalidCommand`, `InvalidAddressType` or
  `AddressParseError`.
- `tuic.assembly`: `Fragments` splits a payload into `(Header, chunk)`
  pairs that fit a maximum packet size. `UdpSessions` buffers incoming
  fragments per association ID and returns an `Assemblable` once a packet
  is complete. A bad fragment raises `InvalidFragmentId`,
  `InvalidFragmentAddress` or `DuplicatedFragment`, all subclasses of
  `AssembleError`. `TaskCounter` and `Registration` count live tasks.
- `tuic.model`: `Connection`, which builds the sending (`...Tx`) and
  receiving (`...Rx`) side of each command. It counts live `Connect`
  tasks and UDP sessions, and it drops stale fragments with
  `collect_garbage(timeout)`, where the timeout is in seconds or a
  `timedelta`. Authentication tokens come from a `KeyingMaterialExporter`
  subclass that you supply. It is usually backed by the TLS session, and
  it must return 32 bytes.
- `tuic.config`: the server's JSON configuration, `Config`, with
  `load_config`, `config_from_dict`, `parse_duration` and the
  command-line parser `parse`.
- `tuic.utils`: the `CongestionControl` and `UdpRelayMode` enums, plus
  `parse_congestion_control`. `load_certs` and `load_private_key` read
  PEM files and return DER bytes. When a file holds no PEM block of the
  wanted kind, they return the whole file contents instead.
- `tuic.authenticated`: `Authenticated`, which records the UUID that has
  authenticated a connection. Tasks on any event loop can await it, and
  it can be set from any thread.

## Encoding and decoding headers

```python
from tuic.codec import decode_header, encode_header
from tuic.protocol import Connect, DomainAddress, Header

header = Header(Connect(DomainAddress("example.com", 443)))
wire = encode_header(header)
assert decode_header(wire) == header
```

`decode_header` ignores bytes after the header. The header's
`encoded_len()` tells you where a payload that follows it begins.

## Fragmenting and reassembling UDP packets

```python
from tuic.codec import encode_header
from tuic.model import Connection
from tuic.protocol import DomainAddress

sender = Connection()
outgoing = sender.send_packet(1, DomainAddress("example.com", 53), 1200)
datagrams = [encode_header(h) + chunk for h, chunk in outgoing.into_fragments(b"query bytes")]

receiver = Connection()
for datagram in datagrams:
    header = decode_header(datagram)
    incoming = receiver.recv_packet_unrestricted(header)
    complete = incoming.assemble(datagram[header.encoded_len():])
    if complete is not None:
        payload, addr, assoc_id = complete.assemble()
```

`recv_packet` does the same as `recv_packet_unrestricted`, except that it
returns `None` for an association ID that has no open session.
`send_dissociate` and `recv_dissociate` close a session and drop its
buffered fragments.

## Authentication

```python
import hashlib
import uuid

from tuic.model import Connection, KeyingMaterialExporter


class Exporter(KeyingMaterialExporter):
    def export_keying_material(self, label, context):
        return hashlib.sha256(label + context).digest()


conn = Connection()
user = uuid.UUID("00000000-0000-0000-0000-000000000001")
password = "password"
sent = conn.send_authenticate(user, password, Exporter())
received = conn.recv_authenticate(sent.header)
assert received.is_valid(password, Exporter())
```

## Server configuration

A configuration file looks like this:

```json
{
    "server": "[::]:443",
    "users": {"00000000-0000-0000-0000-000000000001": "password"},
    "certificate": "cert.pem",
    "private_key": "key.pem",
    "congestion_control": "bbr",
    "auth_timeout": "3s",
    "log_level": "info"
}
```

The fields `server`, `users`, `certificate` and `private_key` are
required. The other fields are optional:

| Field | Accepted values | Default |
| --- | --- | --- |
| `congestion_control` | `cubic`, `new_reno` or `newreno`, `bbr` (any case) | `cubic` |
| `alpn` | list of strings | empty list |
| `udp_relay_ipv6` | boolean | `true` |
| `zero_rtt_handshake` | boolean | `false` |
| `dual_stack` | boolean or null | null |
| `auth_timeout` | duration | `3s` |
| `task_negotiation_timeout` | duration | `3s` |
| `max_idle_time` | duration | `10s` |
| `max_external_packet_size` | integer | 1500 |
| `send_window` | integer | 16 MiB |
| `receive_window` | integer | 8 MiB |
| `gc_interval` | duration | `3s` |
| `gc_lifetime` | duration | `15s` |
| `log_level` | `off`, `error`, `warn`, `info`, `debug`, `trace` | `warn` |

Durations are strings such as `"3s"`, `"500ms"` or `"1h 30m"`.

```python
from tuic.config import load_config

config = load_config("server.json")
print(config.server, config.congestion_control, config.auth_timeout)
```

`load_config` rejects unknown keys, missing required keys, an empty
`users` table and malformed values by raising `ConfigError`.

`tuic.config.parse(argv)` takes command-line arguments without the
program name, and reads `sys.argv` when given none. It understands
`-c/--config <path>`, `-v/--version` and `-h/--help`. It raises
`ShowVersion` or `ShowHelp`, whose `message` holds the text to print,
and it raises `ConfigError` for any other problem.

## What this package does not do

The package performs no network I/O. It has no QUIC endpoint, no TLS
setup, and no server loop that accepts connections. It does not relay
TCP streams or UDP datagrams itself, and it installs no command. It
gives you the protocol pieces and the configuration. You plug them into
the QUIC transport of your choice.