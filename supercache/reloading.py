"""Hot-reload of configuration and peer-list helpers."""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import Callable, Iterable
from typing import Any

from supercache.config import Config, ConfigError, load


def _strip(value: str) -> str:
    return value.strip()


def _strip_lower(value: str) -> str:
    return value.strip().lower()


# Field name, whether it may change on reload (None marks the peer list),
# and an optional normalising key applied before comparison.
_DIFF_FIELDS: tuple[tuple[str, bool | None, Callable[[Any], Any] | None], ...] = (
    ("client_bind", False, None),
    ("client_port", False, None),
    ("peer_bind", False, None),
    ("peer_port", False, None),
    ("shared_secret", False, None),
    ("mgmt_socket", False, None),
    ("mgmt_tcp_bind", False, _strip),
    ("mgmt_tcp_port", False, None),
    ("peers", None, None),
    ("bootstrap_peer", False, _strip),
    ("bootstrap_queue_depth", False, None),
    ("log_level", True, None),
    ("log_output", True, None),
    ("log_format", True, _strip_lower),
    ("metrics_bind", False, _strip),
    ("metrics_port", False, None),
    ("client_tls_cert_file", False, _strip),
    ("client_tls_key_file", False, _strip),
    ("client_tls_min_version", False, _strip),
    ("peer_tls_cert_file", False, _strip),
    ("peer_tls_key_file", False, _strip),
    ("peer_tls_ca_file", False, _strip),
    ("peer_tls_min_version", False, _strip),
    ("max_memory", True, None),
    ("max_memory_policy", True, None),
    ("auth_password", True, None),
    ("heartbeat_interval", True, None),
    ("heartbeat_timeout", True, None),
    ("peer_queue_depth", True, None),
    ("gossip_peers", False, None),
    ("peer_state_file", False, _strip),
    ("repl_shutdown_spill_path", False, _strip),
)


def reload(current: Config | None, path: str | os.PathLike[str]) -> tuple[Config, list[str]]:
    """Load path and return the new config with the hot-reloadable fields that changed.

    Raises ConfigError when the file is invalid or a field that needs a restart differs.
    """
    try:
        new_cfg = load(path)
    except ConfigError as exc:
        raise ConfigError(f"reload config: {exc}") from exc
    if current is None:
        return new_cfg, []
    changed, blocked = diff_configs(current, new_cfg)
    if blocked:
        raise ConfigError(f"cannot hot-reload changed fields: {', '.join(blocked)}")
    return new_cfg, changed


def diff_configs(a: Config, b: Config) -> tuple[list[str], list[str]]:
    """Compare two configs; return (hot-reloadable changes, changes that need a restart)."""
    hot: list[str] = []
    blocked: list[str] = []
    for name, reloadable, key in _DIFF_FIELDS:
        old, new = getattr(a, name), getattr(b, name)
        if reloadable is None:
            if list(old) != list(new):
                (hot if _peers_multiset_subset(old, new) else blocked).append(name)
            continue
        if key is not None:
            old, new = key(old), key(new)
        if old != new:
            (hot if reloadable else blocked).append(name)
    return hot, blocked


def _peers_multiset_subset(old: list[str], new: list[str]) -> bool:
    """True when every address in old occurs in new at least as many times."""
    if len(old) > len(new):
        return False
    return not (Counter(old) - Counter(new))


def _unique_nonblank(items: Iterable[str], seen: set[str]) -> list[str]:
    out: list[str] = []
    for item in items:
        p = item.strip()
        if not p or p in seen:
            continue
        seen.add(p)
        out.append(p)
    return out


def merge_peer_lists(base: Iterable[str], extra: Iterable[str]) -> list[str]:
    """Join two address lists, trimmed, without blanks or duplicates, base first."""
    seen: set[str] = set()
    return _unique_nonblank(base, seen) + _unique_nonblank(extra, seen)


def bootstrap_candidates(cfg: Config | None) -> list[str]:
    """Ordered bootstrap sources: bootstrap_peer first, then the other peers as failover."""
    if cfg is None:
        return []
    primary = cfg.bootstrap_peer.strip()
    if not primary:
        return []
    return [primary] + _unique_nonblank(cfg.peers, {primary})