"""Peer mesh handshake frames and HMAC-SHA256 challenge-response authentication.

The shared secret never travels on the wire: the listener sends a random nonce and
the dialer answers with HMAC-SHA256(secret, nonce).
"""

from __future__ import annotations

import hashlib
import hmac as _hmac
import json
import re
import secrets
from dataclasses import dataclass
from typing import Any

PEER_PROTOCOL_VERSION = 2
WIRE_OP_HELLO = "HELLO"
WIRE_OP_HELLO_ACK = "HELLO_ACK"
NONCE_SIZE = 32

_HEX = re.compile(r"(?:[0-9a-fA-F]{2})*")


def _encode(doc: dict[str, Any]) -> str:
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)


def _decode_object(data: str | bytes) -> dict[str, Any]:
    doc = json.loads(data)
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ValueError("expected a JSON object")
    return doc


def _get(doc: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = doc.get(key)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise ValueError(f"field {key}: unexpected value {value!r}")
    return value


@dataclass
class Hello:
    """First frame a dialing peer sends."""

    op: str = WIRE_OP_HELLO
    ver: int = PEER_PROTOCOL_VERSION

    def to_json(self) -> str:
        """Encode as a compact JSON object."""
        return _encode({"op": self.op, "ver": self.ver})

    @classmethod
    def from_json(cls, data: str | bytes) -> "Hello":
        """Decode from JSON; raise ValueError on malformed input."""
        doc = _decode_object(data)
        return cls(op=_get(doc, "op", str, ""), ver=_get(doc, "ver", int, 0))


@dataclass
class HelloAck:
    """Listener's answer to HELLO: a challenge nonce, or an error."""

    op: str = WIRE_OP_HELLO_ACK
    ok: bool = False
    ver: int = 0
    nonce: str = ""
    err: str = ""

    def to_json(self) -> str:
        """Encode as a compact JSON object, leaving out empty optional fields."""
        doc: dict[str, Any] = {"op": self.op, "ok": self.ok}
        if self.ver:
            doc["ver"] = self.ver
        if self.nonce:
            doc["nonce"] = self.nonce
        if self.err:
            doc["err"] = self.err
        return _encode(doc)

    @classmethod
    def from_json(cls, data: str | bytes) -> "HelloAck":
        """Decode from JSON; raise ValueError on malformed input."""
        doc = _decode_object(data)
        return cls(
            op=_get(doc, "op", str, ""),
            ok=_get(doc, "ok", bool, False),
            ver=_get(doc, "ver", int, 0),
            nonce=_get(doc, "nonce", str, ""),
            err=_get(doc, "err", str, ""),
        )


@dataclass
class AuthProof:
    """Dialer's proof of the shared secret: hex HMAC over the decoded nonce."""

    op: str = ""
    ver: int = PEER_PROTOCOL_VERSION
    hmac: str = ""

    def to_json(self) -> str:
        """Encode as a compact JSON object."""
        return _encode({"op": self.op, "ver": self.ver, "hmac": self.hmac})

    @classmethod
    def from_json(cls, data: str | bytes) -> "AuthProof":
        """Decode from JSON; raise ValueError on malformed input."""
        doc = _decode_object(data)
        return cls(
            op=_get(doc, "op", str, ""),
            ver=_get(doc, "ver", int, 0),
            hmac=_get(doc, "hmac", str, ""),
        )


def peer_hmac(secret: str, nonce: bytes) -> bytes:
    """HMAC-SHA256 of nonce keyed with the shared secret."""
    return _hmac.new(secret.encode("utf-8"), nonce, hashlib.sha256).digest()


def peer_hmac_hex(secret: str, nonce: bytes) -> str:
    """Lower-case hex form of peer_hmac."""
    return peer_hmac(secret, nonce).hex()


def verify_peer_hmac(secret: str, hmac_hex: str, nonce: bytes) -> bool:
    """Check a hex HMAC proof against the expected one in constant time."""
    want = peer_hmac(secret, nonce)
    if not _HEX.fullmatch(hmac_hex):
        return False
    got = bytes.fromhex(hmac_hex)
    if len(got) != len(want):
        return False
    return _hmac.compare_digest(want, got)


def random_nonce() -> bytes:
    """Fresh random challenge bytes."""
    return secrets.token_bytes(NONCE_SIZE)