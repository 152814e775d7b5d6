"""
Length-prefixed frames carried over a plain TCP socket.

Every frame is:
    >II            header length, payload length
    header         UTF-8 JSON object, always has a "kind" key
    payload        raw bytes (chunk data), possibly empty

Frame kinds:
    call     {"method", "metadata", "timeout"}  opens a call, first frame on a connection
    message  {"body"} + payload                 one request or response message
    end      {}                                 sender is done writing (half-close)
    status   {"code", "message"}                server's final word on the call
"""

import json
import socket
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import ProtocolError

ENC = "utf-8"
PREFIX = struct.Struct(">II")
MAX_HEADER_SIZE = 64 * 1024
MAX_PAYLOAD_SIZE = 4 * 1024 * 1024

CALL = "call"
MESSAGE = "message"
END = "end"
STATUS = "status"

KINDS = (CALL, MESSAGE, END, STATUS)


@dataclass
class Message:
    """One request or response: a JSON body plus optional raw bytes."""

    body: Dict[str, Any] = field(default_factory=dict)
    payload: bytes = b""


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = sock.recv(min(size - len(buf), 65536))
        if not chunk:
            raise ConnectionError("socket closed mid-frame")
        buf.extend(chunk)
    return bytes(buf)


def send_frame(sock: socket.socket, header: Dict[str, Any], payload: bytes = b"") -> None:
    '''
    Send one frame: the prefix, the JSON header and the raw payload.
    Raises ProtocolError when either part exceeds its limit.
    '''
    if header.get("kind") not in KINDS:
        raise ProtocolError(f"unknown frame kind: {header.get('kind')!r}")
    head = json.dumps(header, ensure_ascii=False).encode(ENC)
    if len(head) > MAX_HEADER_SIZE:
        raise ProtocolError(f"frame header too large: {len(head)} bytes")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(f"frame payload too large: {len(payload)} bytes")
    sock.sendall(PREFIX.pack(len(head), len(payload)) + head + payload)


def recv_frame(sock: socket.socket) -> Optional[Tuple[Dict[str, Any], bytes]]:
    '''
    Receive one frame as (header, payload).
    Returns None when the peer closed the connection cleanly between frames.
    '''
    first = sock.recv(PREFIX.size)
    if not first:
        return None
    if len(first) < PREFIX.size:
        first += _recv_exact(sock, PREFIX.size - len(first))
    head_len, payload_len = PREFIX.unpack(first)
    if head_len > MAX_HEADER_SIZE or payload_len > MAX_PAYLOAD_SIZE:
        raise ProtocolError(f"frame exceeds limits: header={head_len} payload={payload_len}")

    try:
        header = json.loads(_recv_exact(sock, head_len).decode(ENC))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"malformed frame header: {e}") from e
    if not isinstance(header, dict) or header.get("kind") not in KINDS:
        raise ProtocolError("frame header is not a known frame kind")

    payload = _recv_exact(sock, payload_len) if payload_len else b""
    return header, payload


def send_message(sock: socket.socket, message: Message) -> None:
    send_frame(sock, {"kind": MESSAGE, "body": message.body}, message.payload)


def send_end(sock: socket.socket) -> None:
    send_frame(sock, {"kind": END})


def send_call(sock: socket.socket, method: str, metadata: Dict[str, str], timeout: Optional[float]) -> None:
    send_frame(sock, {"kind": CALL, "method": method, "metadata": metadata, "timeout": timeout})


def send_status(sock: socket.socket, code: int, message: str = "") -> None:
    send_frame(sock, {"kind": STATUS, "code": int(code), "message": message})
