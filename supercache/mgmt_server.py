"""Management API server over a Unix socket and/or loopback TCP, plus client calls.

Each connection carries exactly one JSON request line and receives one JSON response line.
"""

from __future__ import annotations

import hmac
import os
import selectors
import socket
import threading
from typing import Any

from supercache.mgmt_handlers import ExtendedHandler, Handler, dispatch_mgmt
from supercache.mgmt_protocol import MgmtRequest, MgmtResponse, read_line, write_line

_POLL_INTERVAL = 0.1
_UNIX_SOCKET_MODE = 0o660


class MgmtError(Exception):
    """Raised for management server setup failures and error replies to client calls."""


def _split_addr(addr: str) -> tuple[str, int]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or not addr[end + 1 :].startswith(":"):
            raise MgmtError(f"invalid address {addr!r}")
        host, port_str = addr[1:end], addr[end + 2 :]
    else:
        host, sep, port_str = addr.rpartition(":")
        if not sep:
            raise MgmtError(f"invalid address {addr!r}: missing port")
    if not port_str.isdigit():
        raise MgmtError(f"invalid address {addr!r}: bad port")
    return host, int(port_str)


def _listen_unix(path: str) -> socket.socket:
    try:
        os.remove(path)
    except OSError:
        pass
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(path)
        sock.listen()
    except OSError as exc:
        sock.close()
        raise MgmtError(f"mgmt unix listen {path}: {exc}") from exc
    try:
        os.chmod(path, _UNIX_SOCKET_MODE)
    except OSError:
        pass
    return sock


def _listen_tcp(addr: str) -> socket.socket:
    host, port = _split_addr(addr)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        return socket.create_server((host, port), family=family)
    except OSError as exc:
        raise MgmtError(f"mgmt tcp listen {addr}: {exc}") from exc


class MgmtServer:
    """Serves management requests authenticated with the cluster shared secret.

    unix_path "" or "-" skips the Unix listener; tcp_addr "" skips TCP.
    """

    def __init__(self, unix_path: str, tcp_addr: str, secret: str, handler: Handler | None) -> None:
        self._unix_path = unix_path
        self._tcp_addr = tcp_addr
        self._secret = secret
        self._handler = handler
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    def run(self, stop: threading.Event | None = None) -> None:
        """Listen and serve until stop is set; raise MgmtError on setup failure."""
        self._run(stop if stop is not None else threading.Event(), None)

    def start(self) -> "MgmtServer":
        """Serve in a background thread; return once the listeners are bound."""
        if self._thread is not None:
            raise MgmtError("mgmt: server already started")
        self._stop = threading.Event()
        self._error = None
        ready = threading.Event()

        def target() -> None:
            try:
                self._run(self._stop, ready)
            except BaseException as exc:  # surfaced to the caller of start()
                self._error = exc
                ready.set()

        self._thread = threading.Thread(target=target, name="mgmt-server", daemon=True)
        self._thread.start()
        ready.wait()
        if self._error is not None:
            self._thread.join()
            self._thread = None
            raise self._error
        return self

    def close(self) -> None:
        """Stop a server started with start() and wait for its listener thread."""
        if self._stop is not None:
            self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "MgmtServer":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run(self, stop: threading.Event, ready: threading.Event | None) -> None:
        if self._handler is None:
            raise MgmtError("mgmt: invalid server")
        unix = self._unix_path.strip()
        tcp = self._tcp_addr.strip()
        skip_unix = unix in ("", "-")
        if skip_unix and not tcp:
            raise MgmtError("mgmt: no listeners")
        listeners: list[socket.socket] = []
        try:
            if not skip_unix:
                listeners.append(_listen_unix(unix))
            if tcp:
                listeners.append(_listen_tcp(tcp))
        except MgmtError:
            for ln in listeners:
                ln.close()
            raise
        try:
            with selectors.DefaultSelector() as sel:
                for ln in listeners:
                    ln.setblocking(False)
                    sel.register(ln, selectors.EVENT_READ)
                if ready is not None:
                    ready.set()
                while not stop.is_set():
                    for key, _ in sel.select(timeout=_POLL_INTERVAL):
                        try:
                            conn, _ = key.fileobj.accept()
                        except (BlockingIOError, InterruptedError):
                            continue
                        except OSError as exc:
                            raise MgmtError(f"mgmt accept: {exc}") from exc
                        conn.setblocking(True)
                        threading.Thread(target=self._serve_conn, args=(conn,), daemon=True).start()
        finally:
            for ln in listeners:
                ln.close()

    def _serve_conn(self, conn: socket.socket) -> None:
        with conn, conn.makefile("rwb") as stream:
            try:
                line = read_line(stream)
            except (EOFError, OSError):
                return
            try:
                req = MgmtRequest.from_json(line)
            except ValueError:
                self._reply(stream, MgmtResponse(ok=False, error="invalid json"))
                return
            if not hmac.compare_digest(req.secret.encode("utf-8"), self._secret.encode("utf-8")):
                self._reply(stream, MgmtResponse(ok=False, error="bad auth"))
                return
            ext = self._handler if isinstance(self._handler, ExtendedHandler) else None
            try:
                resp = dispatch_mgmt(self._handler, ext, req)
            except Exception as exc:  # reported to the management client
                resp = MgmtResponse(ok=False, error=str(exc))
            self._reply(stream, resp)

    @staticmethod
    def _reply(stream: Any, resp: MgmtResponse) -> None:
        try:
            write_line(stream, resp)
        except OSError:
            pass


def _connect(network: str, address: str, timeout: float | None) -> socket.socket:
    if network == "unix":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(address)
        except OSError:
            sock.close()
            raise
        return sock
    if network == "tcp":
        return socket.create_connection(_split_addr(address), timeout=timeout)
    raise MgmtError(f"unknown network {network!r}")


def client_call_raw(
    network: str,
    address: str,
    secret: str,
    cmd: str,
    args: Any = None,
    timeout: float | None = None,
) -> Any:
    """Send one command and return the decoded data of a successful reply.

    Raises OSError when the connection fails and MgmtError on an error reply.
    """
    req = MgmtRequest(secret=secret, cmd=cmd.strip().upper(), args=args)
    with _connect(network, address, timeout) as sock, sock.makefile("rwb") as stream:
        write_line(stream, req)
        try:
            line = read_line(stream)
        except EOFError as exc:
            raise MgmtError(f"read response: {exc}") from exc
    try:
        res = MgmtResponse.from_json(line)
    except ValueError as exc:
        raise MgmtError(f"response json: {exc}") from exc
    if not res.ok:
        raise MgmtError(res.error or "mgmt error")
    return res.data


def _expect(data: Any, kind: type, empty: Any, what: str) -> Any:
    if data is None:
        return empty
    if not isinstance(data, kind):
        raise MgmtError(f"decode {what}: unexpected value {data!r}")
    return data


def client_ping(network: str, address: str, secret: str, timeout: float | None = None) -> str:
    """PING; return the reply string."""
    return _expect(client_call_raw(network, address, secret, "PING", None, timeout), str, "", "result")


def client_info(network: str, address: str, secret: str, timeout: float | None = None) -> dict[str, Any]:
    """INFO; return the info map."""
    return _expect(client_call_raw(network, address, secret, "INFO", None, timeout), dict, {}, "info")


def client_reload_config(network: str, address: str, secret: str, timeout: float | None = None) -> None:
    """RELOAD_CONFIG; the same path as a reload signal."""
    client_call_raw(network, address, secret, "RELOAD_CONFIG", None, timeout)


def client_status(network: str, address: str, secret: str, timeout: float | None = None) -> dict[str, Any]:
    """STATUS; return uptime, peers, memory, key count and bootstrap state."""
    return _expect(client_call_raw(network, address, secret, "STATUS", None, timeout), dict, {}, "status")


def client_peers_list(
    network: str, address: str, secret: str, timeout: float | None = None
) -> list[dict[str, Any]]:
    """PEERS_LIST; return configured peers with their connection state."""
    rows = _expect(
        client_call_raw(network, address, secret, "PEERS_LIST", None, timeout), list, [], "peers list"
    )
    if not all(isinstance(row, dict) for row in rows):
        raise MgmtError("decode peers list: expected a list of objects")
    return rows


def client_peers_add(
    network: str, address: str, secret: str, addr: str, timeout: float | None = None
) -> None:
    """PEERS_ADD a runtime peer."""
    client_call_raw(network, address, secret, "PEERS_ADD", {"addr": addr}, timeout)


def client_peers_remove(
    network: str, address: str, secret: str, addr: str, timeout: float | None = None
) -> None:
    """PEERS_REMOVE a runtime peer."""
    client_call_raw(network, address, secret, "PEERS_REMOVE", {"addr": addr}, timeout)


def client_debug_keyspace(
    network: str, address: str, secret: str, count: int, timeout: float | None = None
) -> dict[str, Any]:
    """DEBUG_KEYSPACE; sample up to count keys with type and TTL."""
    data = client_call_raw(network, address, secret, "DEBUG_KEYSPACE", {"count": count}, timeout)
    return _expect(data, dict, {}, "debug keyspace")


def client_bootstrap_status(
    network: str, address: str, secret: str, timeout: float | None = None
) -> dict[str, Any]:
    """BOOTSTRAP_STATUS; return bootstrap telemetry."""
    data = client_call_raw(network, address, secret, "BOOTSTRAP_STATUS", None, timeout)
    return _expect(data, dict, {}, "bootstrap status")


def client_shutdown(
    network: str, address: str, secret: str, graceful: bool, timeout: float | None = None
) -> None:
    """SHUTDOWN the process, gracefully or not."""
    client_call_raw(network, address, secret, "SHUTDOWN", {"graceful": graceful}, timeout)