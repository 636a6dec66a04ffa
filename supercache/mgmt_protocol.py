"""Line-delimited JSON requests and responses for the management API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, BinaryIO


def _encode(doc: Any) -> str:
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
    if not isinstance(value, kind):
        raise ValueError(f"field {key}: unexpected value {value!r}")
    return value


@dataclass
class MgmtRequest:
    """One management request; args holds the decoded JSON arguments or None."""

    secret: str = ""
    cmd: str = ""
    args: Any = None

    def to_json(self) -> str:
        """Encode as one compact JSON object, leaving out absent args."""
        doc: dict[str, Any] = {"secret": self.secret, "cmd": self.cmd}
        if self.args is not None:
            doc["args"] = self.args
        return _encode(doc)

    @classmethod
    def from_json(cls, data: str | bytes) -> "MgmtRequest":
        """Decode a request; raise ValueError on malformed JSON."""
        doc = _decode_object(data)
        return cls(
            secret=_get(doc, "secret", str, ""),
            cmd=_get(doc, "cmd", str, ""),
            args=doc.get("args"),
        )


@dataclass
class MgmtResponse:
    """Result of one management request."""

    ok: bool = False
    data: Any = None
    error: str = ""

    def to_json(self) -> str:
        """Encode as one compact JSON object, leaving out empty data and error."""
        doc: dict[str, Any] = {"ok": self.ok}
        if self.data is not None:
            doc["data"] = self.data
        if self.error:
            doc["error"] = self.error
        return _encode(doc)

    @classmethod
    def from_json(cls, data: str | bytes) -> "MgmtResponse":
        """Decode a response; raise ValueError on malformed JSON."""
        doc = _decode_object(data)
        return cls(
            ok=_get(doc, "ok", bool, False),
            data=doc.get("data"),
            error=_get(doc, "error", str, ""),
        )


def read_line(stream: BinaryIO) -> bytes:
    """Read one newline-terminated line without its line ending; raise EOFError if none is complete."""
    line = stream.readline()
    if not line.endswith(b"\n"):
        raise EOFError("connection closed before end of line")
    line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def write_line(stream: BinaryIO, obj: Any) -> None:
    """Write obj as one JSON line."""
    if isinstance(obj, (MgmtRequest, MgmtResponse)):
        text = obj.to_json()
    else:
        text = _encode(obj)
    stream.write(text.encode("utf-8") + b"\n")
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()