# supercache

Building blocks for a replicated, Redis-style in-memory cache server: configuration
loading and hot-reload, logging setup, peer authentication messages, reconnect
backoff, and a line-delimited JSON management API with client helpers.

## Install

```
pip install .
```

To run the tests, install `.[test]` and run `pytest`.

## Modules

- `supercache.config`: the `Config` dataclass, `load`, `apply_defaults`,
  `Config.validate`, `parse_memory_bytes`, `validate_peer_addr` and `ConfigError`.
- `supercache.reloading`: `reload`, `diff_configs`, `merge_peer_lists` and
  `bootstrap_candidates`.
- `supercache.resolve`: `first_existing_default_config_path` and
  `resolve_config_path_for_load`.
- `supercache.logsetup`: `init_logging` and `parse_level`.
- `supercache.peerauth`: the `Hello`, `HelloAck` and `AuthProof` frames, plus `peer_hmac`,
  `peer_hmac_hex`, `verify_peer_hmac` and `random_nonce`.
- `supercache.retry`: `backoff_delay` and `backoff_sleep`.
- `supercache.mgmt_protocol`: `MgmtRequest`, `MgmtResponse`, `read_line` and `write_line`.
- `supercache.mgmt_handlers`: the `Handler` and `ExtendedHandler` protocols, the
  `handle_*` functions and `dispatch_mgmt`.
- `supercache.mgmt_server`: `MgmtServer`, `MgmtError` and the `client_*` call functions.

## Configuration

`load(path)` reads a file and then fills in defaults and validates the result. A file
ending in `.yaml` or `.yml` is read as YAML. Any other file is read as TOML. Keys
follow the field names of `Config`, for example `client_port`, `peer_port`, `peers`,
`shared_secret`, `max_memory`, `max_memory_policy` and `log_level`. Unknown keys are
ignored. Any failure raises `ConfigError`.

```python
from supercache.config import load, ConfigError

try:
    cfg = load("/etc/supercache/supercache.toml")
except ConfigError as exc:
    print("bad config:", exc)
else:
    print(cfg.client_port, cfg.max_memory_bytes())
```

The defaults are:

- client port 6379 and peer port 7379, both bound to `0.0.0.0`;
- `max_memory = "0"`, which means unlimited;
- `max_memory_policy = "noeviction"`;
- `log_level = "info"` and `log_output = "stdout"`;
- heartbeat interval 5 s and heartbeat timeout 15 s;
- management socket `/var/run/supercache.sock`.

Validation checks the following:

- `shared_secret` must hold at least 32 characters.
- Every port must lie in range, and the ports must not collide.
- `peers` and `bootstrap_peer` must be `host:port` addresses.
- `max_memory` takes a size such as `512mb` or `2gb`. The suffixes `b`, `k`/`kb`,
  `m`/`mb` and `g`/`gb` are accepted.
- The directory that `log_output` names must be writable.
- `mgmt_tcp_bind` must be a loopback address.
- TLS certificate, key and CA files must exist and be regular files. A certificate
  and its key must be set together.
- The TLS minimum version must be `1.2` or `1.3`.

When no path is given, `resolve_config_path_for_load("")` returns the first of these
that exists:

1. `/etc/supercache/supercache.toml`
2. `/etc/supercache/supercache.conf`

If neither exists, it returns the first path.

## Reloading

```python
from supercache.reloading import reload

new_cfg, changed = reload(cfg, "/etc/supercache/supercache.toml")
```

`changed` lists the hot-reloadable fields that differ. These are `log_level`,
`log_output`, `log_format`, `max_memory`, `max_memory_policy`, `auth_password`, the
heartbeat settings and `peer_queue_depth`. It also includes `peers` when peers were
only added.

A change to any other field raises `ConfigError` naming the field. Such fields include
`client_port`, `shared_secret`, `metrics_port`, the TLS files and `gossip_peers`.
`diff_configs(a, b)` returns the pair `(hot, blocked)` without loading anything.

## Logging

`init_logging(cfg)` installs a handler on the root logger and returns a cleanup
callable. The handler writes to stdout, stderr or an appended log file. With
`log_format` set to `json` it writes one JSON object per line. Otherwise, `text` or
`logfmt`, it writes `key=value` lines. The level comes from `log_level`.

## Peer authentication

The listener sends a `HelloAck` that carries a hex nonce. The dialer answers with an
`AuthProof` whose `hmac` is `peer_hmac_hex(secret, nonce)`. The listener checks it with
`verify_peer_hmac`. `random_nonce()` returns 32 random bytes.

## Reconnect backoff

`backoff_delay(attempt)` starts at 1 s, doubles with each attempt up to 30 s, and adds
up to 25% jitter. `backoff_sleep(attempt, stop)` waits for that delay. It returns
`False` if the `threading.Event` `stop` is set first.

## Management API

Each connection carries one request line,
`{"secret": ..., "cmd": ..., "args": ...}`, and gets one reply line,
`{"ok": ..., "data": ..., "error": ...}`.

The commands are `PING`, `INFO`, `STATUS`, `RELOAD_CONFIG`, `PEERS_LIST`, `PEERS_ADD`,
`PEERS_REMOVE`, `SHUTDOWN`, `DEBUG_KEYSPACE` and `BOOTSTRAP_STATUS`. Command names are
case-insensitive.

```python
from supercache.mgmt_server import MgmtServer, client_ping, client_status

secret = "secret"
with MgmtServer("/tmp/supercache.sock", "", secret, handler):
    print(client_ping("unix", "/tmp/supercache.sock", secret))
    print(client_status("unix", "/tmp/supercache.sock", secret))
```

`handler` must provide `ping()` and `info()`. To serve the other commands it must also
provide the `ExtendedHandler` methods:

- `reload_config()`
- `status()`
- `peers_list()`
- `peers_add(addr)`
- `peers_remove(addr)`
- `debug_keyspace(max_keys)`
- `bootstrap_status()`
- `request_shutdown(graceful)`

A request with the wrong secret gets the error `bad auth`. A request with malformed
JSON gets `invalid json`.

The client calls take `network` (`"unix"` or `"tcp"`), `address` (a socket path or
`host:port`), the secret and an optional `timeout`. They raise `OSError` when the
connection fails and `MgmtError` on an error reply. `MgmtServer.run(stop)` serves in
the calling thread until `stop` is set. `start()` and `close()` run the server in a
background thread.

## What this package does not do

This package holds no cache store and no Redis-protocol client server. It has no peer
replication or bootstrap service and no metrics endpoint. It installs no command-line
program. The management server answers requests only by calling the handler object
that you supply.