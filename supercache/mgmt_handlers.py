"""Management command handlers and dispatch."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from supercache.mgmt_protocol import MgmtRequest, MgmtResponse

DEFAULT_DEBUG_KEYSPACE_COUNT = 10


@runtime_checkable
class Handler(Protocol):
    """Read-only management operations."""

    def ping(self) -> str:
        """Liveness answer."""

    def info(self) -> dict[str, Any]:
        """Server information map."""


@runtime_checkable
class ExtendedHandler(Protocol):
    """Management operations for reload, peers, debugging and shutdown; failures raise."""

    def reload_config(self) -> list[str]:
        """Reload configuration; return the hot-reloaded fields that changed."""

    def status(self) -> dict[str, Any]:
        """Structured node status."""

    def peers_list(self) -> list[dict[str, Any]]:
        """Configured peers with their connection state."""

    def peers_add(self, addr: str) -> None:
        """Add a runtime peer."""

    def peers_remove(self, addr: str) -> None:
        """Remove a configured peer."""

    def debug_keyspace(self, max_keys: int) -> dict[str, Any]:
        """Sample up to max_keys keys with type and TTL."""

    def bootstrap_status(self) -> dict[str, Any]:
        """Bootstrap and replication queue telemetry."""

    def request_shutdown(self, graceful: bool) -> None:
        """Ask the process to shut down."""


def _fail(message: str) -> MgmtResponse:
    return MgmtResponse(ok=False, error=message)


def _addr_arg(args: Any) -> str | None:
    if isinstance(args, dict):
        addr = args.get("addr")
        if isinstance(addr, str) and addr.strip():
            return addr
    return None


def handle_ping(h: Handler | None) -> MgmtResponse:
    """PING."""
    if h is None:
        return _fail("ping not supported")
    return MgmtResponse(ok=True, data=h.ping())


def handle_info(h: Handler | None) -> MgmtResponse:
    """INFO."""
    if h is None:
        return _fail("info not supported")
    return MgmtResponse(ok=True, data=h.info())


def handle_status(ext: ExtendedHandler | None) -> MgmtResponse:
    """STATUS: structured node status."""
    if ext is None:
        return _fail("status not supported")
    return MgmtResponse(ok=True, data=ext.status())


def handle_reload_config(ext: ExtendedHandler | None) -> MgmtResponse:
    """RELOAD_CONFIG: reload from disk and report changed hot-reloadable fields."""
    if ext is None:
        return _fail("reload not supported")
    try:
        changed = ext.reload_config()
    except Exception as exc:  # reported to the management client
        return _fail(str(exc))
    return MgmtResponse(ok=True, data=changed)


def handle_peers_list(ext: ExtendedHandler | None) -> MgmtResponse:
    """PEERS_LIST."""
    if ext is None:
        return _fail("peers list not supported")
    return MgmtResponse(ok=True, data=ext.peers_list())


def handle_peers_add(ext: ExtendedHandler | None, args: Any) -> MgmtResponse:
    """PEERS_ADD with args {"addr": "host:port"}."""
    if ext is None:
        return _fail("peers add not supported")
    addr = _addr_arg(args)
    if addr is None:
        return _fail("missing addr in args")
    try:
        ext.peers_add(addr.strip())
    except Exception as exc:  # reported to the management client
        return _fail(str(exc))
    return MgmtResponse(ok=True, data={"addr": addr})


def handle_peers_remove(ext: ExtendedHandler | None, args: Any) -> MgmtResponse:
    """PEERS_REMOVE with args {"addr": "host:port"}."""
    if ext is None:
        return _fail("peers remove not supported")
    addr = _addr_arg(args)
    if addr is None:
        return _fail("missing addr in args")
    try:
        ext.peers_remove(addr.strip())
    except Exception as exc:  # reported to the management client
        return _fail(str(exc))
    return MgmtResponse(ok=True, data="OK")


def handle_shutdown(ext: ExtendedHandler | None, args: Any) -> MgmtResponse:
    """SHUTDOWN; graceful unless args say {"graceful": false}."""
    if ext is None:
        return _fail("shutdown not supported")
    graceful = True
    if isinstance(args, dict) and isinstance(args.get("graceful"), bool):
        graceful = args["graceful"]
    try:
        ext.request_shutdown(graceful)
    except Exception as exc:  # reported to the management client
        return _fail(str(exc))
    return MgmtResponse(ok=True, data="OK")


def handle_debug_keyspace(ext: ExtendedHandler | None, args: Any) -> MgmtResponse:
    """DEBUG_KEYSPACE with optional args {"count": n}."""
    if ext is None:
        return _fail("debug keyspace not supported")
    max_keys = DEFAULT_DEBUG_KEYSPACE_COUNT
    if isinstance(args, dict):
        count = args.get("count")
        if isinstance(count, int) and not isinstance(count, bool) and count > 0:
            max_keys = count
    try:
        sample = ext.debug_keyspace(max_keys)
    except Exception as exc:  # reported to the management client
        return _fail(str(exc))
    return MgmtResponse(ok=True, data=sample)


def handle_bootstrap_status(ext: ExtendedHandler | None) -> MgmtResponse:
    """BOOTSTRAP_STATUS."""
    if ext is None:
        return _fail("bootstrap status not supported")
    return MgmtResponse(ok=True, data=ext.bootstrap_status())


def dispatch_mgmt(h: Handler | None, ext: ExtendedHandler | None, req: MgmtRequest) -> MgmtResponse:
    """Route an authenticated request to its handler by case-insensitive command name."""
    cmd = req.cmd.strip().upper()
    if cmd == "PING":
        return handle_ping(h)
    if cmd == "INFO":
        return handle_info(h)
    if cmd == "STATUS":
        return handle_status(ext)
    if cmd == "RELOAD_CONFIG":
        return handle_reload_config(ext)
    if cmd == "PEERS_LIST":
        return handle_peers_list(ext)
    if cmd == "PEERS_ADD":
        return handle_peers_add(ext, req.args)
    if cmd == "PEERS_REMOVE":
        return handle_peers_remove(ext, req.args)
    if cmd == "SHUTDOWN":
        return handle_shutdown(ext, req.args)
    if cmd == "DEBUG_KEYSPACE":
        return handle_debug_keyspace(ext, req.args)
    if cmd == "BOOTSTRAP_STATUS":
        return handle_bootstrap_status(ext)
    return _fail("unknown command")