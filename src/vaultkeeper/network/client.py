"""
Client side of the /vaultkeeper.Vault/* methods.

Each method opens one connection, sends the call frame with the bearer
token and the call timeout, exchanges messages and reads the final status.
A non-OK status is raised as RpcError.

If no server address is configured, ServiceFinder locates one advertised
under _vaultkeeper._tcp.local.
"""

import logging
import socket
import threading
from typing import Any, Dict, List, Optional

from zeroconf import ServiceBrowser, Zeroconf

from . import framing
from .context import CallContext
from .framing import Message
from .interceptors import (
    AUTHORIZATION,
    BEARER_PREFIX,
    CHANGE_PASSWORD,
    DEACTIVATE_VAULT,
    GET_STREAMED_VAULTS,
    GET_VAULTS,
    LOGIN_USER,
    PING,
    REGISTER_USER,
    SAVE_VAULT,
    UPLOAD_FILE,
)
from .server import SERVICE_TYPE
from .status import RpcError, StatusCode
from .transfer import CHUNK_SIZE, receive_emission, send_upload
from ..core.models import VaultRecord, record_from_header

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DISCOVER_TIMEOUT = 8.0  # seconds to wait for service discovery


class ClientCall:
    """One open call: write messages, half-close, read replies until the status."""

    def __init__(self, sock, context: CallContext):
        self._sock = sock
        self.context = context
        self._done = False

    def send(self, message: Message) -> None:
        try:
            framing.send_message(self._sock, message)
        except OSError as e:
            self._raise_pending_status(e)

    def close_send(self) -> None:
        try:
            framing.send_end(self._sock)
        except OSError as e:
            self._raise_pending_status(e)

    def recv(self) -> Optional[Message]:
        """Next reply message; None after an OK status, RpcError on any other."""
        if self._done:
            return None
        try:
            frame = framing.recv_frame(self._sock)
        except socket.timeout as e:
            raise RpcError(StatusCode.DEADLINE_EXCEEDED, "deadline exceeded") from e
        if frame is None:
            raise RpcError(StatusCode.UNKNOWN, "connection closed before status")
        header, payload = frame
        if header["kind"] == framing.STATUS:
            self._done = True
            code = header.get("code", StatusCode.UNKNOWN)
            if code != StatusCode.OK:
                raise RpcError(code, header.get("message", ""))
            return None
        if header["kind"] != framing.MESSAGE:
            raise RpcError(StatusCode.UNKNOWN, f"unexpected {header['kind']} frame")
        body = header.get("body")
        return Message(body=body if isinstance(body, dict) else {}, payload=payload)

    def _raise_pending_status(self, err):
        # the server may have rejected the call and closed; its status explains why
        try:
            while self.recv() is not None:
                pass
        except RpcError:
            raise
        except OSError:
            pass
        raise RpcError(StatusCode.UNKNOWN, f"connection lost: {err}") from err

    def close(self):
        try:
            self._sock.close()
        except OSError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class VaultClient:
    """Typed wrappers around every remote method."""

    def __init__(self, host="localhost", port=8099, timeout=DEFAULT_TIMEOUT, token=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.token = token

    def _metadata(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {AUTHORIZATION: BEARER_PREFIX + self.token}

    def open_call(self, method: str) -> ClientCall:
        metadata = self._metadata()
        sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        try:
            framing.send_call(sock, method, metadata, self.timeout)
        except OSError:
            sock.close()
            raise
        return ClientCall(sock, CallContext.with_timeout(method, metadata, self.timeout))

    def _unary(self, method: str, body: Optional[Dict[str, Any]] = None, payload: bytes = b"") -> Message:
        with self.open_call(method) as call:
            call.send(Message(body=body or {}, payload=payload))
            call.close_send()
            reply = call.recv()
            while call.recv() is not None:
                pass
        return reply or Message()

    def ping(self) -> Dict[str, Any]:
        return self._unary(PING).body

    def register(self, login: str, password: str) -> str:
        """Create an account and keep the returned token for later calls."""
        reply = self._unary(REGISTER_USER, {"login": login, "password": password})
        self.token = reply.body["token"]
        return self.token

    def login(self, login: str, password: str) -> str:
        reply = self._unary(LOGIN_USER, {"login": login, "password": password})
        self.token = reply.body["token"]
        return self.token

    def save_vault(self, record: VaultRecord) -> VaultRecord:
        """Store a record; the returned copy has id, version and timestamps but no payload."""
        reply = self._unary(SAVE_VAULT, {"record": record.to_header()}, record.encrypted_data)
        return record_from_header(reply.body["record"])

    def get_vaults(self) -> List[VaultRecord]:
        """All active records in one reply; use get_streamed_vaults for large vaults."""
        reply = self._unary(GET_VAULTS)
        records, offset = [], 0
        for header in reply.body.get("records", []):
            size = header.pop("size", 0)
            records.append(record_from_header(header, reply.payload[offset:offset + size]))
            offset += size
        return records

    def deactivate_vault(self, record_id: int) -> None:
        self._unary(DEACTIVATE_VAULT, {"id": record_id})

    def change_password(self, login: str, current_password: str, new_password: str) -> None:
        self._unary(CHANGE_PASSWORD, {
            "login": login,
            "current_password": current_password,
            "new_password": new_password,
        })

    def upload_file(self, file_name: str, blob: bytes, meta_data=None, chunk_size=CHUNK_SIZE) -> VaultRecord:
        """Stream an already encrypted blob as a binary record."""
        with self.open_call(UPLOAD_FILE) as call:
            send_upload(call, file_name, blob, meta_data, chunk_size)
            call.close_send()
            reply = call.recv()
            while call.recv() is not None:
                pass
        if reply is None:
            raise RpcError(StatusCode.UNKNOWN, "upload finished without a reply")
        return record_from_header(reply.body["record"])

    def get_streamed_vaults(self) -> List[VaultRecord]:
        """All active records, newest first, reassembled from chunked emission."""
        with self.open_call(GET_STREAMED_VAULTS) as call:
            call.send(Message())
            call.close_send()
            return receive_emission(call)


class ServiceFinder:
    def __init__(self, service_type=SERVICE_TYPE, timeout=DISCOVER_TIMEOUT):
        self.zeroconf = Zeroconf()  # opens mDNS sockets
        self.service_type = service_type
        self.found_info = None
        self._found_event = threading.Event()
        self._timeout = timeout
        # Zeroconf will call _on_service_event when services are added/removed/updated
        self.browser = ServiceBrowser(self.zeroconf, self.service_type, handlers=[self._on_service_event])

    def _on_service_event(self, zeroconf, service_type, name, state_change=None):
        """
        Resolve the first advertised server and remember its address.
        Prefers IPv4, falls back to the first (IPv6) address.
        """
        if self._found_event.is_set():
            return

        info = zeroconf.get_service_info(service_type, name, timeout=2000)
        if not info or not info.addresses:
            return

        ip = None
        for packed in info.addresses:
            if len(packed) == 4:
                ip = socket.inet_ntoa(packed)
                break
        if ip is None:
            ip = socket.inet_ntop(socket.AF_INET6, info.addresses[0])

        props = {}
        for k, v in (info.properties or {}).items():
            # keys are bytes in many zeroconf versions
            if isinstance(k, bytes):
                k = k.decode("utf-8", errors="replace")
            if isinstance(v, bytes):
                v = v.decode("utf-8", errors="replace")
            props[k] = v

        self.found_info = {"name": name, "ip": ip, "port": info.port, "properties": props}
        self._found_event.set()

    def wait_for_service(self):
        if not self._found_event.wait(self._timeout):
            return None
        return self.found_info

    def close(self):
        self.zeroconf.close()


def discover_server(timeout=DISCOVER_TIMEOUT):
    """Return (ip, port) of the first advertised server, or None."""
    finder = ServiceFinder(timeout=timeout)
    try:
        found = finder.wait_for_service()
    finally:
        finder.close()
    if not found:
        return None
    logger.info("discovered %s at %s:%s", found["name"], found["ip"], found["port"])
    return found["ip"], found["port"]
