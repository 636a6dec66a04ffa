import json
import socket
import threading

import pytest

from supercache.mgmt_protocol import MgmtResponse, read_line
from supercache.mgmt_server import (
    MgmtError,
    MgmtServer,
    client_bootstrap_status,
    client_call_raw,
    client_debug_keyspace,
    client_info,
    client_peers_add,
    client_peers_list,
    client_peers_remove,
    client_ping,
    client_reload_config,
    client_shutdown,
    client_status,
)

SECRET = "secret"
TIMEOUT = 2.0


class StubHandler:
    def ping(self):
        return "PONG"

    def info(self):
        return {"test": True}


class FakeExt:
    def __init__(self):
        self.added = []
        self.removed = []
        self.shutdowns = []
        self.debug_counts = []

    def ping(self):
        return "PONG"

    def info(self):
        return {"k": 1}

    def reload_config(self):
        return ["log_level"]

    def status(self):
        return {
            "uptime_sec": 3,
            "clients_connected": 2,
            "peers_connected": 1,
            "mem_used_bytes": 100,
            "key_count": 10,
            "bootstrap_state": "complete",
        }

    def peers_list(self):
        return [{"address": "p1:1", "state": "connected"}]

    def peers_add(self, addr):
        self.added.append(addr)

    def peers_remove(self, addr):
        self.removed.append(addr)

    def debug_keyspace(self, max_keys):
        self.debug_counts.append(max_keys)
        return {"sample": ["k1"]}

    def bootstrap_status(self):
        return {"state": "idle"}

    def request_shutdown(self, graceful):
        self.shutdowns.append(graceful)


def pick_tcp_addr():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        host, port = s.getsockname()
    return f"{host}:{port}"


def raw_exchange(family, address, payload):
    with socket.socket(family, socket.SOCK_STREAM) as c:
        c.settimeout(TIMEOUT)
        c.connect(address)
        c.sendall(payload)
        with c.makefile("rb") as f:
            return MgmtResponse.from_json(read_line(f))


@pytest.fixture
def sock_path(tmp_path):
    return str(tmp_path / "mgmt.sock")


@pytest.fixture
def unix_ext(sock_path):
    ext = FakeExt()
    with MgmtServer(sock_path, "", SECRET, ext):
        yield sock_path, ext


@pytest.fixture
def tcp_ext():
    addr = pick_tcp_addr()
    ext = FakeExt()
    with MgmtServer("", addr, SECRET, ext):
        yield addr, ext


def test_unix_ping_and_info(sock_path):
    with MgmtServer(sock_path, "", SECRET, StubHandler()):
        assert client_ping("unix", sock_path, SECRET, TIMEOUT) == "PONG"
        assert client_info("unix", sock_path, SECRET, TIMEOUT) == {"test": True}


def test_bad_secret(sock_path):
    wrong_secret = "placeholder"
    with MgmtServer(sock_path, "", SECRET, StubHandler()):
        assert client_ping("unix", sock_path, SECRET, TIMEOUT) == "PONG"
        with pytest.raises(MgmtError, match="bad auth"):
            client_ping("unix", sock_path, wrong_secret, TIMEOUT)


def test_unix_client_helpers_round_trip(unix_ext):
    sock, ext = unix_ext
    client_reload_config("unix", sock, SECRET, TIMEOUT)
    st = client_status("unix", sock, SECRET, TIMEOUT)
    assert st["bootstrap_state"] == "complete"
    assert st["uptime_sec"] == 3
    peers = client_peers_list("unix", sock, SECRET, TIMEOUT)
    assert peers == [{"address": "p1:1", "state": "connected"}]
    client_peers_add("unix", sock, SECRET, "127.0.0.1:9999", TIMEOUT)
    client_peers_remove("unix", sock, SECRET, "127.0.0.1:1", TIMEOUT)
    assert ext.added == ["127.0.0.1:9999"]
    assert ext.removed == ["127.0.0.1:1"]
    dk = client_debug_keyspace("unix", sock, SECRET, 5, TIMEOUT)
    assert dk["sample"] == ["k1"]
    assert ext.debug_counts == [5]
    assert client_bootstrap_status("unix", sock, SECRET, TIMEOUT) == {"state": "idle"}
    client_shutdown("unix", sock, SECRET, False, TIMEOUT)
    client_shutdown("unix", sock, SECRET, True, TIMEOUT)
    assert ext.shutdowns == [False, True]


def test_reload_returns_changed_fields(unix_ext):
    sock, _ = unix_ext
    assert client_call_raw("unix", sock, SECRET, "reload_config", None, TIMEOUT) == ["log_level"]


def test_unix_unknown_command(unix_ext):
    sock, _ = unix_ext
    with pytest.raises(MgmtError) as exc_info:
        client_call_raw("unix", sock, SECRET, "NOT_A_REAL_CMD", None, TIMEOUT)
    assert "unknown" in str(exc_info.value).lower()


def test_lowercase_command_raw(unix_ext):
    sock, _ = unix_ext
    payload = json.dumps({"secret": SECRET, "cmd": "status"}).encode() + b"\n"
    res = raw_exchange(socket.AF_UNIX, sock, payload)
    assert res.ok is True
    assert res.data["key_count"] == 10


def test_unix_malformed_json(sock_path):
    with MgmtServer(sock_path, "", SECRET, StubHandler()):
        res = raw_exchange(socket.AF_UNIX, sock_path, b"{not-json\n")
    assert res.ok is False
    assert "json" in res.error


def test_stub_handler_has_no_extended_commands(sock_path):
    with MgmtServer(sock_path, "", SECRET, StubHandler()):
        with pytest.raises(MgmtError, match="status not supported"):
            client_status("unix", sock_path, SECRET, TIMEOUT)


def test_tcp_run_and_client_calls(tcp_ext):
    addr, ext = tcp_ext
    assert client_ping("tcp", addr, SECRET, TIMEOUT) == "PONG"
    client_reload_config("tcp", addr, SECRET, TIMEOUT)
    assert client_status("tcp", addr, SECRET, TIMEOUT)["peers_connected"] == 1
    assert len(client_peers_list("tcp", addr, SECRET, TIMEOUT)) == 1
    client_peers_add("tcp", addr, SECRET, "h:1", TIMEOUT)
    client_peers_remove("tcp", addr, SECRET, "h:2", TIMEOUT)
    assert client_debug_keyspace("tcp", addr, SECRET, 3, TIMEOUT) == {"sample": ["k1"]}
    assert client_bootstrap_status("tcp", addr, SECRET, TIMEOUT)["state"] == "idle"
    client_shutdown("tcp", addr, SECRET, True, TIMEOUT)
    assert ext.added == ["h:1"]
    assert ext.removed == ["h:2"]
    assert ext.debug_counts == [3]
    assert ext.shutdowns == [True]


def test_tcp_unknown_command(tcp_ext):
    addr, _ = tcp_ext
    with pytest.raises(MgmtError, match="unknown command"):
        client_call_raw("tcp", addr, SECRET, "XYZZY", None, TIMEOUT)


def test_tcp_malformed_json():
    addr = pick_tcp_addr()
    host, port = addr.rsplit(":", 1)
    with MgmtServer("", addr, SECRET, StubHandler()):
        res = raw_exchange(socket.AF_INET, (host, int(port)), b'{"oops\n')
    assert res.ok is False
    assert "json" in res.error


def test_run_no_listeners():
    with pytest.raises(MgmtError, match="no listeners"):
        MgmtServer("-", "", SECRET, StubHandler()).run()


def test_start_no_listeners():
    with pytest.raises(MgmtError, match="no listeners"):
        MgmtServer("", "", SECRET, StubHandler()).start()


def test_run_nil_handler(sock_path):
    with pytest.raises(MgmtError, match="invalid"):
        MgmtServer(sock_path, "", SECRET, None).run()


def test_run_returns_when_stopped(sock_path):
    stop = threading.Event()
    server = MgmtServer(sock_path, "", SECRET, StubHandler())
    thread = threading.Thread(target=server.run, args=(stop,), daemon=True)
    thread.start()
    stop.set()
    thread.join(timeout=3)
    assert not thread.is_alive()


def test_close_stops_listening():
    addr = pick_tcp_addr()
    server = MgmtServer("", addr, SECRET, StubHandler()).start()
    assert client_ping("tcp", addr, SECRET, TIMEOUT) == "PONG"
    server.close()
    with pytest.raises(OSError):
        client_ping("tcp", addr, SECRET, TIMEOUT)


def test_client_call_raw_dial_error():
    with pytest.raises(OSError):
        client_call_raw("tcp", "127.0.0.1:1", SECRET, "PING", None, 0.5)


def test_client_unknown_network():
    with pytest.raises(MgmtError, match="unknown network"):
        client_call_raw("udp", "127.0.0.1:1", SECRET, "PING", None, 0.5)


def test_client_call_raw_bad_response_json(sock_path):
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(sock_path)
    listener.listen()

    def serve():
        conn, _ = listener.accept()
        with conn, conn.makefile("rb") as f:
            read_line(f)
            conn.sendall(b"not-json-at-all\n")

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        with pytest.raises(MgmtError, match="response json"):
            client_call_raw("unix", sock_path, "", "PING", None, TIMEOUT)
    finally:
        thread.join(timeout=3)
        listener.close()