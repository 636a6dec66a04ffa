"""Server configuration: loading, defaults and validation."""

from __future__ import annotations

import dataclasses
import ipaddress
import os
import re
import tempfile
import tomllib
from dataclasses import dataclass, field
from typing import IO, Any

import yaml

DEFAULT_CLIENT_BIND = "0.0.0.0"
DEFAULT_CLIENT_PORT = 6379
DEFAULT_PEER_BIND = "0.0.0.0"
DEFAULT_PEER_PORT = 7379
DEFAULT_BOOTSTRAP_QUEUE_DEPTH = 100000
DEFAULT_PEER_QUEUE_DEPTH = 50000
DEFAULT_HEARTBEAT_INTERVAL = 5
DEFAULT_HEARTBEAT_TIMEOUT = 15
DEFAULT_MGMT_SOCKET = "/var/run/supercache.sock"
DEFAULT_CONFIG_PATH = "/etc/supercache/supercache.toml"
DEFAULT_CONFIG_PATH_ALT = "/etc/supercache/supercache.conf"
DEFAULT_MGMT_TCP_BIND = "127.0.0.1"

ALLOWED_MAX_MEMORY_POLICIES = frozenset(
    {
        "noeviction",
        "allkeys-lru",
        "volatile-lru",
        "allkeys-random",
        "volatile-random",
        "volatile-ttl",
    }
)
ALLOWED_LOG_LEVELS = frozenset({"debug", "info", "warn", "error"})

_UINT64_MAX = (1 << 64) - 1
_MEMORY_SUFFIXES = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024 * 1024,
    "mb": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
    "gb": 1024 * 1024 * 1024,
}
_DIGITS = re.compile(r"[0-9]+")
_SIGNED_INT = re.compile(r"[+-]?[0-9]+")


class ConfigError(ValueError):
    """Raised when configuration cannot be read, parsed or validated."""


@dataclass
class Config:
    """All server settings, keyed by their configuration file names."""

    client_bind: str = ""
    client_port: int = 0
    peer_bind: str = ""
    peer_port: int = 0
    peers: list[str] = field(default_factory=list)
    bootstrap_peer: str = ""
    shared_secret: str = ""
    max_memory: str = ""
    max_memory_policy: str = ""
    auth_password: str = ""
    log_level: str = ""
    log_output: str = ""
    log_format: str = ""
    metrics_bind: str = ""
    metrics_port: int = 0
    bootstrap_queue_depth: int = 0
    peer_queue_depth: int = 0
    heartbeat_interval: int = 0
    heartbeat_timeout: int = 0
    mgmt_socket: str = ""
    mgmt_tcp_bind: str = ""
    mgmt_tcp_port: int = 0
    gossip_peers: bool = False
    peer_state_file: str = ""
    repl_shutdown_spill_path: str = ""
    client_tls_cert_file: str = ""
    client_tls_key_file: str = ""
    client_tls_min_version: str = ""
    peer_tls_cert_file: str = ""
    peer_tls_key_file: str = ""
    peer_tls_ca_file: str = ""
    peer_tls_min_version: str = ""

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "Config":
        """Build a config from a parsed document, ignoring unknown keys."""
        cfg = cls()
        for f in dataclasses.fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            setattr(cfg, f.name, _coerce(f.name, getattr(cfg, f.name), data[f.name]))
        return cfg

    def validate(self) -> None:
        """Check every constraint; raise ConfigError on the first violation."""
        if len(self.shared_secret.strip().encode()) < 32:
            raise ConfigError("shared_secret must be non-empty and at least 32 characters")
        if not 1 <= self.client_port <= 65535:
            raise ConfigError("client_port must be between 1 and 65535")
        if not 1 <= self.peer_port <= 65535:
            raise ConfigError("peer_port must be between 1 and 65535")
        if self.client_port == self.peer_port:
            raise ConfigError("client_port and peer_port must not be equal")
        if self.max_memory_policy.strip().lower() not in ALLOWED_MAX_MEMORY_POLICIES:
            raise ConfigError(
                f"max_memory_policy {self.max_memory_policy.strip()!r} is invalid: must be one of "
                "noeviction, allkeys-lru, volatile-lru, allkeys-random, volatile-random, volatile-ttl"
            )
        if self.log_level.strip().lower() not in ALLOWED_LOG_LEVELS:
            raise ConfigError("log_level must be one of debug, info, warn, error")
        if self.heartbeat_interval < 1:
            raise ConfigError("heartbeat_interval must be 1 or greater")
        if self.heartbeat_timeout <= self.heartbeat_interval:
            raise ConfigError("heartbeat_timeout must be greater than heartbeat_interval")
        for i, peer in enumerate(self.peers):
            _prefixed(f"peers[{i}]", validate_peer_addr, peer)
        if self.bootstrap_peer.strip():
            _prefixed("bootstrap_peer", validate_peer_addr, self.bootstrap_peer)
        _prefixed("max_memory", _validate_max_memory_string, self.max_memory)
        _prefixed("log_output", _validate_log_output_path, self.log_output)
        lf = self.log_format.strip().lower()
        if self.log_format and lf not in ("text", "json", "logfmt"):
            raise ConfigError("log_format must be text, json, or logfmt")
        if self.metrics_port != 0:
            if not 1 <= self.metrics_port <= 65535:
                raise ConfigError("metrics_port must be 0 or between 1 and 65535")
            if self.metrics_port in (self.client_port, self.peer_port):
                raise ConfigError("metrics_port must not equal client_port or peer_port")
        if self.mgmt_tcp_port != 0:
            if not 1 <= self.mgmt_tcp_port <= 65535:
                raise ConfigError("mgmt_tcp_port must be 0 or between 1 and 65535")
            if self.mgmt_tcp_port in (self.client_port, self.peer_port):
                raise ConfigError("mgmt_tcp_port must not equal client_port or peer_port")
            if self.metrics_port != 0 and self.mgmt_tcp_port == self.metrics_port:
                raise ConfigError("mgmt_tcp_port must not equal metrics_port")
            _prefixed("mgmt_tcp_bind", _validate_mgmt_tcp_bind, self.mgmt_tcp_bind)
        elif self.mgmt_tcp_bind.strip():
            raise ConfigError("mgmt_tcp_bind is set but mgmt_tcp_port is 0")

        cc, ck = self.client_tls_cert_file.strip(), self.client_tls_key_file.strip()
        if bool(cc) != bool(ck):
            raise ConfigError("client_tls_cert_file and client_tls_key_file must both be set or both empty")
        if cc:
            _prefixed("client_tls_cert_file", _validate_readable_file, cc)
            _prefixed("client_tls_key_file", _validate_readable_file, ck)
        if self.client_tls_min_version.strip():
            _prefixed("client_tls_min_version", _parse_tls_min_version, self.client_tls_min_version)

        pc, pk = self.peer_tls_cert_file.strip(), self.peer_tls_key_file.strip()
        if bool(pc) != bool(pk):
            raise ConfigError("peer_tls_cert_file and peer_tls_key_file must both be set or both empty")
        if pc:
            _prefixed("peer_tls_cert_file", _validate_readable_file, pc)
            _prefixed("peer_tls_key_file", _validate_readable_file, pk)
            ca = self.peer_tls_ca_file.strip()
            if not ca:
                raise ConfigError("peer_tls_ca_file is required when peer TLS is enabled")
            _prefixed("peer_tls_ca_file", _validate_readable_file, ca)
        elif self.peer_tls_ca_file.strip():
            raise ConfigError("peer_tls_ca_file is set but peer TLS certificate files are not configured")
        if self.peer_tls_min_version.strip():
            _prefixed("peer_tls_min_version", _parse_tls_min_version, self.peer_tls_min_version)

    def client_tls_enabled(self) -> bool:
        """Whether the client port should use TLS."""
        return bool(self.client_tls_cert_file.strip()) and bool(self.client_tls_key_file.strip())

    def peer_tls_enabled(self) -> bool:
        """Whether the peer mesh listener should use TLS."""
        return bool(self.peer_tls_cert_file.strip()) and bool(self.peer_tls_key_file.strip())

    def max_memory_bytes(self) -> int:
        """Configured memory limit in bytes; 0 means unlimited."""
        return parse_memory_bytes(self.max_memory)

    def log_output_is_file(self) -> bool:
        """Whether log_output names a file rather than stdout or stderr."""
        return self.log_output.strip().lower() not in ("stdout", "stderr")

    def open_log_file(self) -> IO[str]:
        """Open the log file for appending."""
        if not self.log_output_is_file():
            raise ConfigError("log_output is not a file path")
        try:
            fd = os.open(self.log_output, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o644)
        except OSError as exc:
            raise ConfigError(f"open log file: {exc}") from exc
        return os.fdopen(fd, "a", encoding="utf-8")

    def normalize_log_level(self) -> str:
        """Canonical lower-case log level."""
        return self.log_level.strip().lower()

    def normalize_max_memory_policy(self) -> str:
        """Canonical lower-case eviction policy."""
        return self.max_memory_policy.strip().lower()


def _coerce(name: str, zero: Any, value: Any) -> Any:
    if isinstance(zero, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(zero, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif isinstance(zero, str):
        if isinstance(value, str):
            return value
    elif isinstance(zero, list):
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return list(value)
    raise ConfigError(f"field {name}: unexpected value {value!r}")


def _prefixed(label: str, check, value) -> None:
    try:
        check(value)
    except ConfigError as exc:
        raise ConfigError(f"{label}: {exc}") from exc


def load(path: str | os.PathLike[str]) -> Config:
    """Read, default and validate a TOML or YAML configuration file."""
    path = os.fspath(path)
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise ConfigError(f"read config file: {exc}") from exc
    ext = os.path.splitext(path)[1].lower()
    if ext in (".yaml", ".yml"):
        try:
            doc = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise ConfigError(f"parse config YAML: {exc}") from exc
        if doc is None:
            doc = {}
        if not isinstance(doc, dict):
            raise ConfigError("parse config YAML: document is not a mapping")
        try:
            cfg = Config.from_mapping(doc)
        except ConfigError as exc:
            raise ConfigError(f"parse config YAML: {exc}") from exc
    else:
        try:
            doc = tomllib.loads(data.decode("utf-8"))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
            raise ConfigError(f"parse config TOML: {exc}") from exc
        try:
            cfg = Config.from_mapping(doc)
        except ConfigError as exc:
            raise ConfigError(f"parse config TOML: {exc}") from exc
    apply_defaults(cfg)
    try:
        cfg.validate()
    except ConfigError as exc:
        raise ConfigError(f"validate config: {exc}") from exc
    return cfg


def apply_defaults(cfg: Config) -> None:
    """Fill zero or empty fields of cfg with their defaults, in place."""
    if cfg.client_bind == "":
        cfg.client_bind = DEFAULT_CLIENT_BIND
    if cfg.client_port == 0:
        cfg.client_port = DEFAULT_CLIENT_PORT
    if cfg.peer_bind == "":
        cfg.peer_bind = DEFAULT_PEER_BIND
    if cfg.peer_port == 0:
        cfg.peer_port = DEFAULT_PEER_PORT
    if cfg.bootstrap_queue_depth == 0:
        cfg.bootstrap_queue_depth = DEFAULT_BOOTSTRAP_QUEUE_DEPTH
    if cfg.peer_queue_depth == 0:
        cfg.peer_queue_depth = DEFAULT_PEER_QUEUE_DEPTH
    if cfg.heartbeat_interval == 0:
        cfg.heartbeat_interval = DEFAULT_HEARTBEAT_INTERVAL
    if cfg.heartbeat_timeout == 0:
        cfg.heartbeat_timeout = DEFAULT_HEARTBEAT_TIMEOUT
    if cfg.mgmt_socket == "":
        cfg.mgmt_socket = DEFAULT_MGMT_SOCKET
    if cfg.mgmt_tcp_port > 0 and not cfg.mgmt_tcp_bind.strip():
        cfg.mgmt_tcp_bind = DEFAULT_MGMT_TCP_BIND
    if cfg.max_memory == "":
        cfg.max_memory = "0"
    if cfg.max_memory_policy == "":
        cfg.max_memory_policy = "noeviction"
    if cfg.log_level == "":
        cfg.log_level = "info"
    if cfg.log_output == "":
        cfg.log_output = "stdout"


def _split_host_port(s: str) -> tuple[str, str]:
    if s.startswith("["):
        end = s.find("]")
        if end < 0:
            raise ConfigError(f"address {s}: missing ']' in address")
        rest = s[end + 1 :]
        if not rest:
            raise ConfigError(f"address {s}: missing port in address")
        if not rest.startswith(":"):
            raise ConfigError(f"address {s}: unexpected character after ']'")
        host, port = s[1:end], rest[1:]
        if "[" in host or "]" in host or "]" in port:
            raise ConfigError(f"address {s}: unexpected bracket in address")
        return host, port
    idx = s.rfind(":")
    if idx < 0:
        raise ConfigError(f"address {s}: missing port in address")
    host, port = s[:idx], s[idx + 1 :]
    if ":" in host:
        raise ConfigError(f"address {s}: too many colons in address")
    if "[" in s or "]" in s:
        raise ConfigError(f"address {s}: unexpected bracket in address")
    return host, port


def validate_peer_addr(s: str) -> None:
    """Check that s is a host:port with a non-empty host and a port in 1..65535."""
    try:
        host, port_str = _split_host_port(s.strip())
    except ConfigError as exc:
        raise ConfigError(f"parse host:port: {exc}") from exc
    if host == "":
        raise ConfigError("host must be non-empty")
    if not _SIGNED_INT.fullmatch(port_str):
        raise ConfigError(f"invalid port: {port_str!r} is not an integer")
    port = int(port_str)
    if not 1 <= port <= 65535:
        raise ConfigError("port must be between 1 and 65535")


def parse_memory_bytes(s: str) -> int:
    """Parse a size such as "512mb" or "2gb" into bytes; "0" or "" means unlimited."""
    s = s.strip().lower()
    if s in ("0", ""):
        return 0
    i = len(s)
    while i > 0 and not ("0" <= s[i - 1] <= "9"):
        i -= 1
    if i == 0:
        raise ConfigError("invalid max_memory format")
    num_str, suffix = s[:i], s[i:].strip()
    if not _DIGITS.fullmatch(num_str):
        raise ConfigError(f"parse max_memory number: invalid number {num_str!r}")
    n = int(num_str)
    if n > _UINT64_MAX:
        raise ConfigError(f"parse max_memory number: value {num_str!r} out of range")
    if suffix not in _MEMORY_SUFFIXES:
        raise ConfigError(f"unknown max_memory suffix {suffix!r}")
    mul = _MEMORY_SUFFIXES[suffix]
    if n > _UINT64_MAX // mul:
        raise ConfigError("max_memory value overflow")
    return n * mul


def _validate_max_memory_string(s: str) -> None:
    parse_memory_bytes(s)


def _parse_tls_min_version(s: str) -> str:
    s = s.lower().strip()
    if s in ("", "1.2", "1.3"):
        return s
    raise ConfigError("must be 1.2 or 1.3")


def _validate_readable_file(path: str) -> None:
    try:
        st = os.stat(path)
    except OSError as exc:
        raise ConfigError(str(exc)) from exc
    if os.path.isdir(path) or not os.path.exists(path) or st is None:
        raise ConfigError("not a regular file")


def _validate_mgmt_tcp_bind(bind: str) -> None:
    b = bind.strip()
    if not b or b.lower() == "localhost":
        return
    try:
        ip = ipaddress.ip_address(b)
    except ValueError:
        ip = None
    if ip is not None:
        if ip.is_loopback:
            return
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None and ip.ipv4_mapped.is_loopback:
            return
    raise ConfigError("must be a loopback address (127.0.0.1, ::1, localhost)")


def _validate_log_output_path(log_output: str) -> None:
    if log_output.strip().lower() in ("stdout", "stderr"):
        return
    directory = os.path.dirname(log_output) or "."
    try:
        os.stat(directory)
    except FileNotFoundError as exc:
        raise ConfigError(f"parent directory does not exist: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"stat parent directory: {exc}") from exc
    if not os.path.isdir(directory):
        raise ConfigError(f"parent path {directory!r} is not a directory")
    try:
        fd, name = tempfile.mkstemp(prefix=".supercache-log-check-", dir=directory)
    except OSError as exc:
        raise ConfigError(f"parent directory not writable: {exc}") from exc
    os.close(fd)
    try:
        os.remove(name)
    except OSError:
        pass